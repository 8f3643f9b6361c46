from __future__ import annotations


class ConfigurationError(ValueError):
    """Walk-forward settings that cannot be planned."""


class InvalidOperationError(RuntimeError):
    """Strategy used out of order (e.g. before initialize)."""
