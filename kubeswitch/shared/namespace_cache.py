"""Last observed namespaces per context, under ``<state>/namespace/``."""

from __future__ import annotations

import logging
import os
from typing import Iterable, List

from kubeswitch.shared.utils import atomic_write

logger = logging.getLogger("kubeswitch.namespace")


def cache_file_name(context: str) -> str:
    return context.replace("/", "")


class NamespaceCache:
    def __init__(self, state_dir: str, context: str):
        self.context = context
        self.path = os.path.join(state_dir, "namespace", cache_file_name(context))

    def read(self) -> List[str]:
        try:
            with open(self.path, "r") as handle:
                return [line.strip() for line in handle if line.strip()]
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("failed to read namespace cache %s: %s", self.path, exc)
            return []

    def write(self, namespaces: Iterable[str]) -> None:
        data = "".join(f"{ns}\n" for ns in namespaces)
        try:
            atomic_write(self.path, data.encode(), mode=0o644)
        except OSError as exc:
            logger.warning("failed to write namespace cache %s: %s", self.path, exc)


def merge_namespaces(cached: Iterable[str], live: Iterable[str]) -> List[str]:
    """Keep cached namespaces that still exist, in cached order, then append new ones sorted."""
    live_set = set(live)
    merged = [ns for ns in cached if ns in live_set]
    seen = set(merged)
    merged.extend(ns for ns in sorted(live_set) if ns not in seen)
    return merged
