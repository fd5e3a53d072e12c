"""Per-box coefficient stores for the butterfly sweep."""

from __future__ import annotations

from typing import Any, Optional

import jax.numpy as jnp
from jaxtyping import Array, DTypeLike

from ..errors import BindingStateError
from ..tree import Box, NDTree


class BoxBinding:
    """Coefficient vectors attached to the boxes of one tree.

    For a given level pairing every box on ``level`` of the owning tree holds
    one ``rank``-vector per box of the opposite tree's paired level. Slots of
    a level must be sized with :meth:`resize` before they are written, are
    written exactly once and may be released once no later level reads them.
    """

    def __init__(self, tree: NDTree, rank: int, dtype: DTypeLike):
        self._tree = tree
        self._rank = int(rank)
        self._dtype = dtype
        self._sizes: dict[int, int] = {}
        self._values: dict[int, Array] = {}

    @property
    def tree(self: "BoxBinding") -> NDTree:
        return self._tree

    @property
    def rank(self: "BoxBinding") -> int:
        return self._rank

    def is_sized(self: "BoxBinding", level: int) -> bool:
        return level in self._sizes

    def is_written(self: "BoxBinding", level: int) -> bool:
        return level in self._values

    def resize(self: "BoxBinding", level: int, num_opposite: int) -> None:
        """Size every slot on ``level`` to ``num_opposite`` coefficient vectors."""
        if level in self._values:
            raise BindingStateError(
                f"level {level} was already written and cannot be resized"
            )
        self._tree.num_boxes(level)
        self._sizes[level] = int(num_opposite)

    def shape(self: "BoxBinding", level: int) -> tuple[int, int, int]:
        size = self._require_sized(level)
        return (self._tree.num_boxes(level), size, self._rank)

    def write(self: "BoxBinding", level: int, values: Array) -> None:
        """Store the whole level at once."""
        expected = self.shape(level)
        if level in self._values:
            raise BindingStateError(f"level {level} was already written")
        if tuple(values.shape) != expected:
            raise BindingStateError(
                f"level {level} expects shape {expected}, got {tuple(values.shape)}"
            )
        self._values[level] = jnp.asarray(values, dtype=self._dtype)

    def level_values(self: "BoxBinding", level: int) -> Array:
        self._require_sized(level)
        values = self._values.get(level)
        if values is None:
            raise BindingStateError(f"level {level} was sized but never written")
        return values

    def release(self: "BoxBinding", level: int) -> None:
        self._sizes.pop(level, None)
        self._values.pop(level, None)

    def __getitem__(self: "BoxBinding", box: Box) -> Array:
        return self.level_values(box.level)[box.index]

    def _require_sized(self, level: int) -> int:
        size: Optional[int] = self._sizes.get(level)
        if size is None:
            raise BindingStateError(
                f"binding slot on level {level} accessed before being sized"
            )
        return size


def make_box_binding(tree: NDTree, rank: int, dtype: Any = jnp.complex128) -> BoxBinding:
    """Create an empty binding over ``tree`` with ``rank``-long coefficient vectors."""
    return BoxBinding(tree, rank, dtype)


__all__ = ["BoxBinding", "make_box_binding"]
