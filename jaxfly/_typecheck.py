"""Opt-in runtime contract checking for the jaxfly package.

Set ``JAXFLY_RUNTIME_TYPECHECK=1`` before importing :mod:`jaxfly` to run
every annotated callable of the package through jaxtyping's import hook.
The transfer operators carry ``@jaxtyped`` decorators of their own; the hook
extends the checks to the tree, binding and facade layers.
"""

from __future__ import annotations

import os
from typing import Any, Optional

_DISABLED_VALUES = frozenset({"", "0", "false", "no", "off"})
_TYPECHECKER = "beartype.beartype"

_installed_hook: Any = None


def _requested_by_environment() -> bool:
    raw = os.getenv("JAXFLY_RUNTIME_TYPECHECK", "0")
    return raw.strip().lower() not in _DISABLED_VALUES


def enable_runtime_typecheck(force: Optional[bool] = None) -> bool:
    """Install the jaxtyping import hook for ``jaxfly`` once.

    ``force`` overrides the environment variable. Returns whether checking is
    active after the call.
    """
    global _installed_hook

    if _installed_hook is not None:
        return True
    requested = _requested_by_environment() if force is None else bool(force)
    if not requested:
        return False

    from jaxtyping import install_import_hook

    _installed_hook = install_import_hook("jaxfly", typechecker=_TYPECHECKER)
    return True


__all__ = ["enable_runtime_typecheck"]
