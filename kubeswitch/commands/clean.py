"""Remove temporary kubeconfigs and flush persisted fetch caches."""

from __future__ import annotations

import logging
import os
import shutil
from typing import Optional

from kubeswitch.commands.common import SwitchOptions, Workspace
from kubeswitch.shared.cache import Flushable
from kubeswitch.shared.stores import find_capability
from kubeswitch.shared.switcher import default_temp_dir

logger = logging.getLogger("kubeswitch.clean")


def remove_temp_kubeconfigs(temp_dir: Optional[str] = None) -> int:
    temp_dir = temp_dir or default_temp_dir()
    if not os.path.isdir(temp_dir):
        return 0
    count = len(os.listdir(temp_dir))
    shutil.rmtree(temp_dir)
    return count


async def clean(options: SwitchOptions, temp_dir: Optional[str] = None) -> int:
    """Return how many files were removed."""
    removed = remove_temp_kubeconfigs(temp_dir)
    async with Workspace(options) as workspace:
        for store in workspace.stores:
            cache = find_capability(store, Flushable)
            if cache is not None:
                flushed = cache.flush()
                logger.debug("flushed %d cached kubeconfigs of %s", flushed, store.id())
                removed += flushed
    return removed
