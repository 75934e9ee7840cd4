"""Alias table stored as ``switch.alias`` in the state directory."""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple

import yaml

from kubeswitch.shared.errors import AliasError
from kubeswitch.shared.utils import atomic_write

logger = logging.getLogger("kubeswitch.aliases")

ALIAS_FILE_NAME = "switch.alias"


class AliasTable:
    """Mapping context -> alias; every alias names exactly one context."""

    def __init__(self, state_dir: str):
        self.path = os.path.join(state_dir, ALIAS_FILE_NAME)
        self.context_to_alias: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r") as handle:
                data = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            return
        except (OSError, yaml.YAMLError) as exc:
            raise AliasError(f"failed to read alias file {self.path!r}. File corrupt?: {exc}") from exc
        mapping = data.get("contextToAliasMapping") if isinstance(data, dict) else None
        self.context_to_alias = {str(k): str(v) for k, v in (mapping or {}).items()}

    def aliases(self) -> Dict[str, str]:
        """Return alias -> context."""
        return {alias: context for context, alias in self.context_to_alias.items()}

    def alias_for(self, context: str) -> Optional[str]:
        return self.context_to_alias.get(context)

    def resolve(self, alias: str) -> Optional[str]:
        return self.aliases().get(alias)

    def set(self, alias: str, context: str) -> Optional[str]:
        """Bind ``alias`` to ``context`` and return the context it was bound to before."""
        if not alias or not context:
            raise AliasError("alias and context must not be empty")
        previous = self.resolve(alias)
        if previous is not None:
            del self.context_to_alias[previous]
        self.context_to_alias[context] = alias
        self.save()
        return previous

    def remove(self, alias: str) -> str:
        context = self.resolve(alias)
        if context is None:
            raise AliasError(f'alias with name "{alias}" does not exist')
        del self.context_to_alias[context]
        self.save()
        return context

    def save(self) -> None:
        data = {"contextToAliasMapping": dict(self.context_to_alias)}
        atomic_write(self.path, yaml.safe_dump(data, sort_keys=True).encode(), mode=0o644)
        logger.debug("wrote %d aliases to %s", len(self.context_to_alias), self.path)


def parse_alias_assignment(value: str) -> Tuple[str, str]:
    """Split ``ALIAS=CONTEXT``."""
    alias, sep, context = value.partition("=")
    if not sep or not alias.strip() or not context.strip():
        raise AliasError(f"invalid alias {value!r}, expected ALIAS=CONTEXT")
    return alias.strip(), context.strip()
