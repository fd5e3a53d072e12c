"""Exception hierarchy for the butterfly runtime."""

from __future__ import annotations


class ButterflyError(Exception):
    """Base class for all jaxfly errors."""


class ConfigurationError(ButterflyError, ValueError):
    """Invalid problem or tree configuration, detected before any traversal."""


class BindingStateError(ButterflyError, RuntimeError):
    """A box binding slot was used outside its sized/written lifecycle."""


class DegenerateNormError(ButterflyError, ArithmeticError):
    """A reference value has zero norm while the computed value does not."""


__all__ = [
    "BindingStateError",
    "ButterflyError",
    "ConfigurationError",
    "DegenerateNormError",
]
