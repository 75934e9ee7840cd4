"""Shared error types."""

from __future__ import annotations

from typing import Iterable, List


class SwitchError(RuntimeError):
    """Base class for every error surfaced to the user."""


class ConfigError(SwitchError):
    """Raised when the switch configuration cannot be loaded or is invalid."""

    def __init__(self, message: str, problems: Iterable[str] = ()):
        self.problems: List[str] = list(problems)
        if self.problems:
            message = message + ":\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class UnknownStoreKindError(ConfigError):
    """Raised when a store or cache kind is not registered."""


class StoreInitError(SwitchError):
    """Raised when a kubeconfig store cannot be constructed."""


class StoreVerifyError(SwitchError):
    """Raised when a store's search paths fail verification."""


class KubeconfigError(SwitchError):
    """Raised for unparsable kubeconfigs or failed mutations."""


class ContextNotFoundError(SwitchError):
    """Raised when a requested context is not among the discovered contexts."""


class AliasError(SwitchError):
    """Raised for invalid alias operations."""


class PluginError(SwitchError):
    """Raised when a store plugin fails the handshake or an RPC."""
