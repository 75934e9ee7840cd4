"""Context switch history at ``$HOME/.kube/.switch_history``."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("kubeswitch.history")

SEPARATOR = " :: "


def default_history_path() -> str:
    return str(Path.home() / ".kube" / ".switch_history")


@dataclass(frozen=True)
class HistoryEntry:
    context: str
    namespace: str = ""

    @classmethod
    def parse(cls, line: str) -> "HistoryEntry":
        context, _, namespace = line.rstrip("\n").partition(SEPARATOR.strip())
        return cls(context=context.strip(), namespace=namespace.strip())

    def to_line(self) -> str:
        return f"{self.context}{SEPARATOR}{self.namespace}".rstrip()


def read_history(path: Optional[str] = None) -> List[HistoryEntry]:
    """Return history entries newest first; a missing file is an empty history."""
    path = path or default_history_path()
    try:
        with open(path, "r") as handle:
            lines = [line for line in handle.read().splitlines() if line.strip()]
    except FileNotFoundError:
        return []
    return [HistoryEntry.parse(line) for line in reversed(lines)]


def append_history(context: str, namespace: str = "", path: Optional[str] = None) -> bool:
    """Append ``context :: namespace`` unless it repeats the last line.

    Returns whether a line was written.
    """
    path = path or default_history_path()
    entry = HistoryEntry(context=context, namespace=namespace or "")
    history = read_history(path)
    if history and history[0] == entry:
        return False

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "a") as handle:
        handle.write(entry.to_line() + "\n")
    logger.debug("appended %r to history", entry.to_line())
    return True


def previous_entry(history: List[HistoryEntry]) -> Optional[HistoryEntry]:
    """Target of ``-``: the second newest entry, or the only one."""
    if not history:
        return None
    return history[1] if len(history) > 1 else history[0]


def last_entry(history: List[HistoryEntry]) -> Optional[HistoryEntry]:
    """Target of ``.``: the newest entry."""
    return history[0] if history else None
