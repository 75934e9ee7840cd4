"""Per-store search index: a context -> (key, tags) mapping with a refresh time."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import yaml

from kubeswitch.shared.stores.base import Tags
from kubeswitch.shared.utils import atomic_write

logger = logging.getLogger("kubeswitch.index")


@dataclass
class IndexEntry:
    key: str
    tags: Tags = field(default_factory=dict)


@dataclass
class IndexState:
    kind: str
    last_update_time: datetime


def _parse_time(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SearchIndex:
    """Two sibling files in the state directory per (kind, id):

    ``switch.<kind>.<id>.index`` with the mapping and
    ``switch.<kind>.<id>.index.state`` with the kind and last refresh time.
    Read and write failures are logged; callers fall back to a live search.
    """

    def __init__(self, state_dir: str, kind: str, store_id: str):
        self.kind = kind
        # store IDs already start with "<kind>."
        self.index_path = os.path.join(state_dir, f"switch.{store_id}.index")
        self.state_path = self.index_path + ".state"

    def _load_yaml(self, path: str) -> Optional[dict]:
        try:
            with open(path, "r") as handle:
                data = yaml.safe_load(handle)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("failed to read %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None

    def read_state(self) -> Optional[IndexState]:
        data = self._load_yaml(self.state_path)
        if data is None:
            return None
        try:
            updated = _parse_time(data.get("lastExecutionTime"))
        except ValueError as exc:
            logger.warning("invalid index state %s: %s", self.state_path, exc)
            return None
        if updated is None:
            return None
        return IndexState(kind=str(data.get("kind") or ""), last_update_time=updated)

    def should_be_used(self, ttl: Optional[timedelta], now: Optional[datetime] = None) -> bool:
        """True when a TTL is set, both files exist, the kind matches and the index is fresh."""
        if not ttl:
            return False
        if not os.path.exists(self.index_path):
            return False
        state = self.read_state()
        if state is None or state.kind != self.kind:
            return False
        now = now or datetime.now(timezone.utc)
        return now - state.last_update_time < ttl

    def read(self) -> Optional[Dict[str, IndexEntry]]:
        data = self._load_yaml(self.index_path)
        if data is None:
            return None
        if data.get("kind") not in (None, self.kind):
            return None
        paths = data.get("contextToPathMapping") or {}
        all_tags = data.get("contextToTags") or {}
        return {
            str(context): IndexEntry(
                key=str(key),
                tags={str(k): str(v) for k, v in (all_tags.get(context) or {}).items()},
            )
            for context, key in paths.items()
        }

    def write(self, entries: Dict[str, IndexEntry], now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        index = {
            "kind": self.kind,
            "contextToPathMapping": {ctx: entry.key for ctx, entry in entries.items()},
            "contextToTags": {ctx: dict(entry.tags) for ctx, entry in entries.items() if entry.tags},
        }
        state = {
            "kind": self.kind,
            "lastExecutionTime": now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        }
        try:
            atomic_write(self.index_path, yaml.safe_dump(index, sort_keys=False).encode(), mode=0o644)
            atomic_write(self.state_path, yaml.safe_dump(state, sort_keys=False).encode(), mode=0o644)
        except OSError as exc:
            logger.warning("failed to write search index %s: %s", self.index_path, exc)
            return False
        return True

    def delete(self) -> None:
        for path in (self.index_path, self.state_path):
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
