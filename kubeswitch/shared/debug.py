"""Runtime-configurable debug logging utilities."""

from __future__ import annotations

import logging
import sys
import threading

_logger = logging.getLogger("kubeswitch")
_state_lock = threading.Lock()
_enabled = False

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_root(level: int = logging.WARNING) -> None:
    """Ensure standard logging configuration is present.

    Output goes to stderr so that stdout stays reserved for the shell wrapper.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def is_enabled() -> bool:
    """Return whether verbose debug logging is active."""

    with _state_lock:
        return _enabled


def enable() -> None:
    """Enable verbose logging globally."""

    global _enabled
    with _state_lock:
        _enabled = True
    _logger.setLevel(logging.DEBUG)
    _logger.debug("Verbose debug mode enabled")


def disable() -> None:
    """Disable verbose logging globally."""

    global _enabled
    with _state_lock:
        _enabled = False
    _logger.setLevel(logging.INFO)


def store_logger(store_id: str) -> logging.Logger:
    """Return the child logger used by one kubeconfig store."""

    return logging.getLogger(f"kubeswitch.store.{store_id}")
