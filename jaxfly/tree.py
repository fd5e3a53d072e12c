"""Uniform-depth 2^D-ary spatial trees over point sets.

Every level partitions the full point set: a level is refined as a whole while
any of its boxes holds more than ``leaf_size`` points, and only non-empty
boxes are kept. All leaves therefore sit on the deepest level. Points are
stored in Morton order so that every box owns a contiguous range of them.
"""

from __future__ import annotations

from typing import NamedTuple, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .runtime.dtypes import INDEX_DTYPE


class Box(NamedTuple):
    """A node of an :class:`NDTree`.

    Attributes
    ----------
    level, index:
        Box identity; ``index`` is the position within ``tree.boxes(level)``.
    start, stop:
        Range of the tree's sorted points contained in this box's subtree.
    parent:
        Index of the parent box on ``level - 1`` (``-1`` for the root).
    children:
        Indices of the non-empty child boxes on ``level + 1``.
    leaf:
        Whether the box sits on the deepest level.
    """

    level: int
    index: int
    start: int
    stop: int
    parent: int
    children: Tuple[int, ...]
    leaf: bool

    def is_leaf(self: "Box") -> bool:
        return self.leaf

    @property
    def num_points(self: "Box") -> int:
        return self.stop - self.start


class _Level(NamedTuple):
    centers: np.ndarray
    half_widths: np.ndarray
    starts: np.ndarray
    stops: np.ndarray
    parents: np.ndarray
    children: np.ndarray
    point_boxes: np.ndarray


def _cell_coordinates(
    unit: np.ndarray,
    level: int,
) -> np.ndarray:
    cells = 1 << level
    coords = np.floor(unit * cells).astype(INDEX_DTYPE)
    return np.clip(coords, 0, cells - 1)


def _morton_codes(coords: np.ndarray, level: int) -> np.ndarray:
    dim = coords.shape[1]
    codes = np.zeros(coords.shape[0], dtype=INDEX_DTYPE)
    for bit in range(level - 1, -1, -1):
        for d in range(dim):
            codes = (codes << 1) | ((coords[:, d] >> bit) & 1)
    return codes


class NDTree:
    """Immutable spatial tree built once from a point set."""

    def __init__(
        self,
        points: np.ndarray,
        leaf_size: int = 16,
        *,
        max_levels: int = 20,
        bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ):
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2:
            raise ConfigurationError("points must have shape (n, dim)")
        if pts.shape[0] == 0:
            raise ConfigurationError("need at least one point")
        if leaf_size < 1:
            raise ConfigurationError("leaf_size must be >= 1")
        dim = pts.shape[1]
        # Morton codes are packed into 63 bits.
        max_levels = max(1, min(int(max_levels), 63 // dim + 1))

        if bounds is None:
            lo = pts.min(axis=0)
            hi = pts.max(axis=0)
        else:
            lo = np.asarray(bounds[0], dtype=np.float64)
            hi = np.asarray(bounds[1], dtype=np.float64)
        center = 0.5 * (lo + hi)
        half = 0.5 * float(np.max(hi - lo))
        if half <= 0.0:
            half = 0.5
        origin = center - half
        unit = (pts - origin) / (2.0 * half)

        depth = 0
        while depth + 1 < max_levels:
            codes = _morton_codes(_cell_coordinates(unit, depth), depth)
            _, counts = np.unique(codes, return_counts=True)
            if counts.max() <= leaf_size:
                break
            depth += 1

        finest = _cell_coordinates(unit, depth)
        order = np.argsort(_morton_codes(finest, depth), kind="stable")
        self._dim = dim
        self._leaf_size = int(leaf_size)
        self._permutation = order.astype(INDEX_DTYPE)
        self._points = pts[order]
        self._num_levels = depth + 1

        sorted_finest = finest[order]
        levels = []
        for level in range(self._num_levels):
            coords = sorted_finest >> (depth - level)
            codes = _morton_codes(coords, level)
            starts = np.flatnonzero(np.r_[True, codes[1:] != codes[:-1]])
            stops = np.r_[starts[1:], codes.shape[0]]
            width = 2.0 * half / (1 << level)
            centers = origin + (coords[starts] + 0.5) * width
            half_widths = np.full_like(centers, 0.5 * width)
            point_boxes = np.repeat(
                np.arange(starts.shape[0], dtype=INDEX_DTYPE), stops - starts
            )
            if level == 0:
                parents = np.full(1, -1, dtype=INDEX_DTYPE)
            else:
                parents = levels[level - 1].point_boxes[starts]
            levels.append(
                _Level(
                    centers=centers,
                    half_widths=half_widths,
                    starts=starts.astype(INDEX_DTYPE),
                    stops=stops.astype(INDEX_DTYPE),
                    parents=parents.astype(INDEX_DTYPE),
                    children=np.empty((starts.shape[0], 0), dtype=INDEX_DTYPE),
                    point_boxes=point_boxes,
                )
            )

        fanout = 1 << dim
        for level in range(self._num_levels - 1):
            num_boxes = levels[level].starts.shape[0]
            children = np.full((num_boxes, fanout), -1, dtype=INDEX_DTYPE)
            fill = np.zeros(num_boxes, dtype=INDEX_DTYPE)
            for child, parent in enumerate(levels[level + 1].parents):
                children[parent, fill[parent]] = child
                fill[parent] += 1
            levels[level] = levels[level]._replace(children=children)
        last = levels[-1]
        levels[-1] = last._replace(
            children=np.full((last.starts.shape[0], fanout), -1, dtype=INDEX_DTYPE)
        )
        self._levels = tuple(levels)
        self._boxes_cache: dict[int, Tuple[Box, ...]] = {}

    @property
    def dim(self: "NDTree") -> int:
        return self._dim

    @property
    def leaf_size(self: "NDTree") -> int:
        return self._leaf_size

    @property
    def num_points(self: "NDTree") -> int:
        return int(self._points.shape[0])

    @property
    def points(self: "NDTree") -> np.ndarray:
        """Points in tree (Morton) order."""
        return self._points

    @property
    def permutation(self: "NDTree") -> np.ndarray:
        """``points == original_points[permutation]``."""
        return self._permutation

    def levels(self: "NDTree") -> int:
        return self._num_levels

    def num_boxes(self: "NDTree", level: int) -> int:
        return int(self._level(level).starts.shape[0])

    def boxes(self: "NDTree", level: int) -> Tuple[Box, ...]:
        """Boxes of ``level`` in a stable (Morton) order."""
        cached = self._boxes_cache.get(level)
        if cached is not None:
            return cached
        data = self._level(level)
        leaf = level == self._num_levels - 1
        boxes = tuple(
            Box(
                level=level,
                index=i,
                start=int(data.starts[i]),
                stop=int(data.stops[i]),
                parent=int(data.parents[i]),
                children=tuple(int(c) for c in data.children[i] if c >= 0),
                leaf=leaf,
            )
            for i in range(data.starts.shape[0])
        )
        self._boxes_cache[level] = boxes
        return boxes

    def point_indices(self: "NDTree", box: Box) -> np.ndarray:
        """Original indices of the points contained in ``box``."""
        return self._permutation[box.start : box.stop]

    def centers(self: "NDTree", level: int) -> np.ndarray:
        return self._level(level).centers

    def half_widths(self: "NDTree", level: int) -> np.ndarray:
        return self._level(level).half_widths

    def parents(self: "NDTree", level: int) -> np.ndarray:
        return self._level(level).parents

    def children(self: "NDTree", level: int) -> np.ndarray:
        """Child indices on ``level + 1``, padded with ``-1`` to ``2**dim`` columns."""
        return self._level(level).children

    def counts(self: "NDTree", level: int) -> np.ndarray:
        data = self._level(level)
        return data.stops - data.starts

    def point_boxes(self: "NDTree", level: int) -> np.ndarray:
        """Box index on ``level`` of every point, in tree order."""
        return self._level(level).point_boxes

    def leaf_flags(self: "NDTree", level: int) -> np.ndarray:
        return np.full(
            self.num_boxes(level), level == self._num_levels - 1, dtype=bool
        )

    def _level(self, level: int) -> _Level:
        if not 0 <= level < self._num_levels:
            raise IndexError(
                f"level {level} outside [0, {self._num_levels - 1}]"
            )
        return self._levels[level]


def build_tree(
    points: np.ndarray,
    leaf_size: int = 16,
    *,
    max_levels: int = 20,
) -> NDTree:
    """Build an :class:`NDTree` from an ``(n, dim)`` point array."""
    return NDTree(points, leaf_size, max_levels=max_levels)


__all__ = ["Box", "NDTree", "build_tree"]
