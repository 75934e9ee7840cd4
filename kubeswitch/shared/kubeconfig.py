"""In-memory kubeconfig model with targeted mutators.

The document is kept as the mapping produced by ``yaml.safe_load`` so keys the
switcher does not touch survive a parse/serialize round-trip in their original
order.
"""

from __future__ import annotations

import copy
import os
import tempfile
from typing import Any, Dict, List, Optional

import yaml

from kubeswitch.shared.errors import KubeconfigError
from kubeswitch.shared.utils import atomic_write

KUBESWITCH_CONTEXT_KEY = "kubeswitch-context"

GARDENER_LANDSCAPE_KEY = "gardener-landscape-identity"
GARDENER_CLUSTER_TYPE_KEY = "gardener-cluster-type"
GARDENER_PROJECT_KEY = "gardener-project"
GARDENER_CLUSTER_NAME_KEY = "gardener-cluster-name"
GARDENER_CLUSTER_NAMESPACE_KEY = "gardener-cluster-namespace"

REDACTED = "[REDACTED]"

_SEQUENCE_KEYS = ("clusters", "users", "contexts")
_SECRET_USER_KEYS = (
    "token",
    "password",
    "client-key-data",
    "client-certificate-data",
    "client-key",
    "client-certificate",
    "tokenFile",
)
_SECRET_AUTH_PROVIDER_KEYS = (
    "access-token",
    "id-token",
    "refresh-token",
    "client-secret",
)


class Kubeconfig:
    """A parsed kubeconfig document."""

    def __init__(self, document: Dict[str, Any], path: Optional[str] = None):
        self._doc = document
        self.path = path

    # ------------------------------------------------------------------ #
    # Construction and serialization
    # ------------------------------------------------------------------ #

    @classmethod
    def parse(cls, data: bytes | str, path: Optional[str] = None) -> "Kubeconfig":
        """Parse kubeconfig bytes.

        Raises:
            KubeconfigError: if the YAML is invalid, the top level is not a
                mapping or one of clusters/users/contexts is not a sequence.
        """
        try:
            document = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise KubeconfigError(f"invalid kubeconfig YAML: {exc}") from exc

        if not isinstance(document, dict):
            raise KubeconfigError("kubeconfig must be a YAML mapping")

        for key in _SEQUENCE_KEYS:
            value = document.get(key)
            if value is not None and not isinstance(value, list):
                raise KubeconfigError(f"kubeconfig field {key!r} must be a sequence")
            for entry in value or []:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise KubeconfigError(
                        f"every entry of kubeconfig field {key!r} needs a name"
                    )
        return cls(document, path=path)

    @classmethod
    def load(cls, path: str) -> "Kubeconfig":
        """Read and parse a kubeconfig file."""
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise KubeconfigError(f"failed to read kubeconfig {path!r}: {exc}") from exc
        return cls.parse(data, path=path)

    def serialize(self) -> bytes:
        return yaml.safe_dump(
            self._doc, sort_keys=False, default_flow_style=False
        ).encode()

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._doc)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Kubeconfig):
            return NotImplemented
        return self._doc == other._doc

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def clusters(self) -> List[Dict[str, Any]]:
        return self._doc.get("clusters") or []

    @property
    def users(self) -> List[Dict[str, Any]]:
        return self._doc.get("users") or []

    @property
    def contexts(self) -> List[Dict[str, Any]]:
        return self._doc.get("contexts") or []

    def get_context_names(self) -> List[str]:
        return [str(ctx["name"]) for ctx in self.contexts]

    def get_current_context(self) -> str:
        return self._doc.get("current-context") or ""

    def _find_context(self, name: str) -> Optional[Dict[str, Any]]:
        for ctx in self.contexts:
            if ctx.get("name") == name:
                return ctx
        return None

    def has_context(self, name: str) -> bool:
        return self._find_context(name) is not None

    def get_namespace(self, context_name: Optional[str] = None) -> str:
        """Return the default namespace of a context (current one by default)."""
        ctx = self._find_context(context_name or self.get_current_context())
        if ctx is None:
            return ""
        return (ctx.get("context") or {}).get("namespace") or ""

    def get_switch_metadata(self, key: str) -> str:
        value = self._doc.get(key)
        return "" if value is None else str(value)

    def get_kubeswitch_context(self) -> str:
        return self.get_switch_metadata(KUBESWITCH_CONTEXT_KEY)

    # ------------------------------------------------------------------ #
    # Mutators
    # ------------------------------------------------------------------ #

    def set_current_context(self, name: str) -> None:
        """Point current-context at ``name`` without checking it exists."""
        self._doc["current-context"] = name

    def rename_context(self, old: str, new: str) -> None:
        ctx = self._find_context(old)
        if ctx is None:
            raise KubeconfigError(f"context {old!r} not found in kubeconfig")
        ctx["name"] = new
        if self.get_current_context() == old:
            self._doc["current-context"] = new

    def remove_context(self, name: str) -> None:
        contexts = self._doc.get("contexts")
        if not contexts:
            return
        self._doc["contexts"] = [ctx for ctx in contexts if ctx.get("name") != name]

    def set_namespace_for_current_context(self, namespace: str) -> None:
        current = self.get_current_context()
        if not current:
            raise KubeconfigError("current-context is not set")
        ctx = self._find_context(current)
        if ctx is None:
            raise KubeconfigError(f"current-context {current!r} does not exist")
        if not isinstance(ctx.get("context"), dict):
            ctx["context"] = {}
        ctx["context"]["namespace"] = namespace

    def set_switch_metadata(self, key: str, value: str) -> None:
        """Set a top-level scalar such as ``kubeswitch-context``."""
        self._doc[key] = value

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #

    def write_sanitized(self) -> bytes:
        """Serialize a copy with credentials elided, for previews only."""
        document = copy.deepcopy(self._doc)
        for entry in document.get("users") or []:
            user = entry.get("user")
            if not isinstance(user, dict):
                continue
            for key in _SECRET_USER_KEYS:
                if key in user:
                    user[key] = REDACTED
            provider_config = (user.get("auth-provider") or {}).get("config")
            if isinstance(provider_config, dict):
                for key in _SECRET_AUTH_PROVIDER_KEYS:
                    if key in provider_config:
                        provider_config[key] = REDACTED
        return yaml.safe_dump(document, sort_keys=False).encode()

    def write_to_temp_file(self, directory: str) -> str:
        """Write into a new ``config.<rand>.tmp`` file below ``directory``.

        The directory is created owner-only when missing and the file is
        created with mode 0600. Returns the absolute path.
        """
        os.makedirs(directory, mode=0o700, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="config.", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "wb") as handle:
            handle.write(self.serialize())
        return os.path.abspath(path)

    def write_to_file(self, path: Optional[str] = None) -> str:
        """Write back to ``path`` (the origin file by default)."""
        target = path or self.path
        if not target:
            raise KubeconfigError("kubeconfig has no origin path to write to")
        mode = 0o600
        if os.path.exists(target):
            mode = os.stat(target).st_mode & 0o777
        atomic_write(target, self.serialize(), mode=mode)
        return target
