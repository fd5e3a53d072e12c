"""Level-synchronized butterfly traversal over a source and a target tree.

The sweep visits levels ``L = 0 .. max_L`` and pairs source level
``max_L - L`` with target level ``L``. Before the split level the source
side coarsens and keeps multipole tables keyed by source boxes; at the split
level the tables are converted into local tables keyed by target boxes, which
the target side then refines down to the points.

Each level is computed as one vectorized scatter over the full cross product
of its source and target boxes; every ``(source box, target box)`` pair owns a
disjoint slot, and a level only reads the completed tables of the level
before it.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple, Optional, Tuple

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array

from ..downward.local_expansions import local_to_local, local_to_target, source_to_local
from ..errors import ConfigurationError
from ..kernels import KernelAdapter, check_kernel
from ..operators.compression import ChebyshevCompression
from ..tree import NDTree
from ..upward.multipole_expansions import (
    multipole_to_multipole,
    multipole_to_target,
    source_to_multipole,
)
from .bindings import BoxBinding, make_box_binding
from .dtypes import INDEX_DTYPE, as_index, result_dtype

logger = logging.getLogger(__name__)


class SourceOperator(str, Enum):
    S2M = "S2M"
    M2M = "M2M"
    S2L = "S2L"


class TargetOperator(str, Enum):
    L2T = "L2T"
    L2L = "L2L"
    M2T = "M2T"


def select_source_operator(
    level: int,
    split_level: int,
    source_is_leaf: bool,
) -> SourceOperator:
    """Source-side rule of a ``(level, source box, target box)`` triple."""
    if level == 0 or source_is_leaf:
        return SourceOperator.S2M
    if level < split_level:
        return SourceOperator.M2M
    return SourceOperator.S2L


def select_target_operator(
    level: int,
    split_level: int,
    max_level: int,
    target_is_leaf: bool,
) -> TargetOperator:
    """Target-side rule of a ``(level, source box, target box)`` triple."""
    if level == max_level or target_is_leaf:
        return TargetOperator.L2T
    if level > split_level:
        return TargetOperator.L2L
    return TargetOperator.M2T


def uses_crossover(level: int, split_level: int) -> bool:
    """Whether the multipole-to-local switch runs on ``level``."""
    return level == split_level


class SweepPlan(NamedTuple):
    """Validated level layout of one butterfly sweep."""

    max_level: int
    split_level: int
    dim: int
    rank: int
    sparse_threshold: int

    def source_level(self: "SweepPlan", level: int) -> int:
        return self.max_level - level


class LevelOperators(NamedTuple):
    """Operators selected for every box of one sweep level."""

    level: int
    source_level: int
    source_ops: Tuple[SourceOperator, ...]
    target_ops: Tuple[TargetOperator, ...]
    crossover: bool

    def source_rows(self: "LevelOperators", op: SourceOperator) -> np.ndarray:
        return np.array([o is op for o in self.source_ops], dtype=bool)

    def target_rows(self: "LevelOperators", op: TargetOperator) -> np.ndarray:
        return np.array([o is op for o in self.target_ops], dtype=bool)


def max_interaction_level(source_tree: NDTree, target_tree: NDTree) -> int:
    """Deepest level at which both trees have a valid box pairing."""
    return min(source_tree.levels(), target_tree.levels()) - 1


def plan_sweep(
    source_tree: NDTree,
    target_tree: NDTree,
    compression: ChebyshevCompression,
) -> SweepPlan:
    """Validate the tree pair and fix the split level."""

    if source_tree.dim != target_tree.dim:
        raise ConfigurationError(
            f"source dimension {source_tree.dim} does not match "
            f"target dimension {target_tree.dim}"
        )
    max_level = max_interaction_level(source_tree, target_tree)
    split_level = max_level // 2
    if split_level <= 0:
        raise ConfigurationError(
            f"butterfly needs at least three paired levels (max_L={max_level}, "
            f"split={split_level}); lower leaf_size or add points"
        )
    dim = source_tree.dim
    return SweepPlan(
        max_level=max_level,
        split_level=split_level,
        dim=dim,
        rank=compression.rank(dim),
        sparse_threshold=compression.threshold(dim),
    )


def level_operators(
    plan: SweepPlan,
    source_tree: NDTree,
    target_tree: NDTree,
    level: int,
) -> LevelOperators:
    """Operator selection for every source and target box of ``level``."""

    source_level = plan.source_level(level)
    source_ops = tuple(
        select_source_operator(level, plan.split_level, bool(leaf))
        for leaf in source_tree.leaf_flags(source_level)
    )
    target_ops = tuple(
        select_target_operator(level, plan.split_level, plan.max_level, bool(leaf))
        for leaf in target_tree.leaf_flags(level)
    )
    return LevelOperators(
        level=level,
        source_level=source_level,
        source_ops=source_ops,
        target_ops=target_ops,
        crossover=uses_crossover(level, plan.split_level),
    )


def retirement_levels(tree: NDTree, threshold: int, last_level: int) -> np.ndarray:
    """Coarsest level ``<= last_level`` at which each point's box is sparse.

    A box is sparse when it holds at most ``threshold`` points. Points whose
    box on ``last_level`` is not sparse get ``-1``.
    """

    retired = np.full(tree.num_points, -1, dtype=INDEX_DTYPE)
    for level in range(last_level, -1, -1):
        sparse = tree.counts(level) <= threshold
        retired = np.where(sparse[tree.point_boxes(level)], level, retired)
    return retired


def _upload(values: np.ndarray) -> Array:
    return jnp.asarray(values)


class _Sweep:
    """Per-call state of :func:`butterfly_sweep`; discarded when it returns."""

    def __init__(
        self,
        kernel: KernelAdapter,
        source_tree: NDTree,
        target_tree: NDTree,
        charges: Array,
        multipoles: BoxBinding,
        locals_: BoxBinding,
        compression: ChebyshevCompression,
        plan: SweepPlan,
    ):
        self.kernel = kernel
        self.sources = source_tree
        self.targets = target_tree
        self.multipoles = multipoles
        self.locals = locals_
        self.compression = compression
        self.plan = plan
        self.grid = compression.grid(plan.dim)
        self.max_entries = compression.block_entries(plan.dim)

        self.source_points = _upload(source_tree.points)
        self.target_points = _upload(target_tree.points)
        self.charges = charges[as_index(source_tree.permutation)]
        self.source_retired = retirement_levels(
            source_tree, plan.sparse_threshold, plan.max_level - plan.split_level
        )
        self.target_retired = retirement_levels(
            target_tree, plan.sparse_threshold, plan.split_level
        )
        self.active_charges = jnp.where(
            _upload(self.source_retired < 0), self.charges, 0
        )

    def run(self: "_Sweep", results: Array) -> Array:
        for level in range(self.plan.max_level + 1):
            ops = level_operators(self.plan, self.sources, self.targets, level)
            logger.debug(
                "level %d: %d source boxes on level %d (%s), %d target boxes (%s)%s",
                level,
                len(ops.source_ops),
                ops.source_level,
                ",".join(sorted({op.value for op in ops.source_ops})),
                len(ops.target_ops),
                ",".join(sorted({op.value for op in ops.target_ops})),
                " + M2L" if ops.crossover else "",
            )
            self._source_side(ops)
            self._local_side(ops)
            results = self._target_side(ops, results)
            # Tables of the previous level have no readers left.
            if level > 0:
                self.multipoles.release(ops.source_level + 1)
                self.locals.release(level - 1)
        return results

    def _source_side(self, ops: LevelOperators) -> None:
        s2m_rows = ops.source_rows(SourceOperator.S2M)
        m2m_rows = ops.source_rows(SourceOperator.M2M)
        if not (s2m_rows.any() or m2m_rows.any()):
            return

        level, source_level = ops.level, ops.source_level
        sources, targets, grid = self.sources, self.targets, self.grid
        num_sources = sources.num_boxes(source_level)
        num_targets = targets.num_boxes(level)
        self.multipoles.resize(source_level, num_targets)
        table = jnp.zeros(self.multipoles.shape(source_level), dtype=self.dtype)

        if s2m_rows.any():
            s2m = source_to_multipole(
                self.kernel,
                grid.nodes_1d,
                grid.nodes,
                self.source_points,
                self.active_charges,
                _upload(sources.point_boxes(source_level)),
                _upload(sources.centers(source_level)),
                _upload(sources.half_widths(source_level)),
                _upload(targets.centers(level)),
                num_boxes=num_sources,
            )
            table = jnp.where(_upload(s2m_rows)[:, None, None], s2m, table)

        if m2m_rows.any():
            m2m = multipole_to_multipole(
                self.kernel,
                grid.nodes_1d,
                grid.nodes,
                self.multipoles.level_values(source_level + 1),
                _upload(sources.children(source_level)),
                _upload(targets.parents(level)),
                _upload(sources.centers(source_level + 1)),
                _upload(sources.half_widths(source_level + 1)),
                _upload(sources.centers(source_level)),
                _upload(sources.half_widths(source_level)),
                _upload(targets.centers(level)),
                max_entries=self.max_entries,
            )
            table = jnp.where(_upload(m2m_rows)[:, None, None], m2m, table)

        self.multipoles.write(source_level, table)

    def _local_side(self, ops: LevelOperators) -> None:
        level, source_level = ops.level, ops.source_level
        sources, targets, grid = self.sources, self.targets, self.grid
        num_sources = sources.num_boxes(source_level)
        parts = []

        s2l_rows = ops.source_rows(SourceOperator.S2L)
        if s2l_rows.any():
            point_boxes = sources.point_boxes(source_level)
            picked = np.flatnonzero(
                (self.source_retired == source_level) & s2l_rows[point_boxes]
            )
            if picked.size:
                index = as_index(picked)
                parts.append(
                    source_to_local(
                        self.kernel,
                        grid.nodes,
                        self.source_points[index],
                        self.charges[index],
                        _upload(point_boxes[picked]),
                        _upload(sources.centers(source_level)),
                        _upload(targets.centers(level)),
                        _upload(targets.half_widths(level)),
                        num_boxes=num_sources,
                        max_entries=self.max_entries,
                    )
                )

        active = targets.counts(level) > self.plan.sparse_threshold
        if ops.crossover and active.any():
            parts.append(
                self.compression.multipole_to_local(
                    self.kernel,
                    grid,
                    self.multipoles.level_values(source_level + 1),
                    _upload(sources.children(source_level)),
                    _upload(targets.parents(level)),
                    _upload(sources.centers(source_level + 1)),
                    _upload(sources.half_widths(source_level + 1)),
                    _upload(sources.centers(source_level)),
                    _upload(targets.centers(level)),
                    _upload(targets.half_widths(level)),
                    _upload(active),
                )
            )

        refine_rows = ops.target_rows(TargetOperator.L2L) | ops.target_rows(
            TargetOperator.L2T
        )
        # The parent level holds no locals when neither M2L nor S2L reached it.
        if (
            refine_rows.any()
            and level > self.plan.split_level
            and self.locals.is_written(level - 1)
        ):
            refined = local_to_local(
                self.kernel,
                grid.nodes_1d,
                grid.nodes,
                self.locals.level_values(level - 1),
                _upload(targets.parents(level)),
                _upload(targets.centers(level - 1)),
                _upload(targets.half_widths(level - 1)),
                _upload(targets.centers(level)),
                _upload(targets.half_widths(level)),
                _upload(sources.children(source_level)),
                _upload(sources.centers(source_level + 1)),
                _upload(sources.centers(source_level)),
                max_entries=self.max_entries,
            )
            parts.append(jnp.where(_upload(refine_rows)[:, None, None], refined, 0))

        if not parts:
            return
        self.locals.resize(level, num_sources)
        total = parts[0]
        for part in parts[1:]:
            total = total + part
        self.locals.write(level, total)

    def _target_side(self, ops: LevelOperators, results: Array) -> Array:
        level, source_level = ops.level, ops.source_level
        sources, targets, grid = self.sources, self.targets, self.grid

        m2t_rows = ops.target_rows(TargetOperator.M2T)
        if m2t_rows.any():
            point_boxes = targets.point_boxes(level)
            picked = np.flatnonzero(
                (self.target_retired == level) & m2t_rows[point_boxes]
            )
            if picked.size:
                # The split level has no multipole table of its own; the
                # previous level's table is valid on the parent target boxes.
                table_level = level if self.multipoles.is_written(source_level) else level - 1
                table_source_level = self.plan.source_level(table_level)
                index = as_index(picked)
                values = multipole_to_target(
                    self.kernel,
                    grid.nodes,
                    self.multipoles.level_values(table_source_level),
                    _upload(sources.centers(table_source_level)),
                    _upload(sources.half_widths(table_source_level)),
                    self.target_points[index],
                    _upload(targets.point_boxes(table_level)[picked]),
                    max_entries=self.max_entries,
                )
                results = results.at[index].add(values)

        l2t_rows = ops.target_rows(TargetOperator.L2T)
        if l2t_rows.any() and self.locals.is_written(level):
            point_boxes = targets.point_boxes(level)
            picked = np.flatnonzero(l2t_rows[point_boxes])
            index = as_index(picked)
            values = local_to_target(
                self.kernel,
                grid.nodes_1d,
                self.locals.level_values(level),
                _upload(targets.centers(level)),
                _upload(targets.half_widths(level)),
                _upload(sources.centers(source_level)),
                self.target_points[index],
                _upload(point_boxes[picked]),
            )
            results = results.at[index].add(values)
        return results

    @property
    def dtype(self: "_Sweep") -> jnp.dtype:
        return jnp.result_type(self.charges, jnp.complex64)


def butterfly_sweep(
    kernel: KernelAdapter,
    source_tree: NDTree,
    target_tree: NDTree,
    charges: Array,
    multipoles: Optional[BoxBinding] = None,
    locals_: Optional[BoxBinding] = None,
    *,
    compression: Optional[ChebyshevCompression] = None,
) -> Array:
    """Approximate ``sum_n K(t_m, s_n) f_n`` for every target of ``target_tree``.

    Parameters
    ----------
    kernel:
        Amplitude/phase kernel; validated before any traversal.
    source_tree, target_tree:
        Trees over the source and target points.
    charges:
        ``(num_sources,)`` complex charges in the caller's source order.
    multipoles, locals_:
        Empty bindings over the source and target trees; created when
        omitted. They are sized and written level by level and hold no data
        once the sweep returns.
    compression:
        Interpolation policy; defaults to :class:`ChebyshevCompression`.

    Returns
    -------
    Array
        ``(num_targets,)`` results in the caller's target order.
    """

    kernel = check_kernel(kernel)
    compression = ChebyshevCompression() if compression is None else compression
    plan = plan_sweep(source_tree, target_tree, compression)

    charges = jnp.asarray(charges)
    if charges.shape != (source_tree.num_points,):
        raise ConfigurationError(
            f"charges must have shape ({source_tree.num_points},), got {charges.shape}"
        )
    dtype = result_dtype(source_tree.points, target_tree.points, charges)
    charges = charges.astype(dtype)
    if multipoles is None:
        multipoles = make_box_binding(source_tree, plan.rank, dtype)
    if locals_ is None:
        locals_ = make_box_binding(target_tree, plan.rank, dtype)
    if multipoles.tree is not source_tree or locals_.tree is not target_tree:
        raise ConfigurationError("bindings must be built over the sweep's trees")

    logger.debug(
        "butterfly sweep: max_L=%d split=%d rank=%d sparse<=%d",
        plan.max_level,
        plan.split_level,
        plan.rank,
        plan.sparse_threshold,
    )
    sweep = _Sweep(
        kernel,
        source_tree,
        target_tree,
        charges,
        multipoles,
        locals_,
        compression,
        plan,
    )
    results = sweep.run(jnp.zeros((target_tree.num_points,), dtype=dtype))
    for level in range(plan.max_level + 1):
        multipoles.release(plan.source_level(level))
        locals_.release(level)

    permutation = as_index(target_tree.permutation)
    return jnp.zeros_like(results).at[permutation].set(results)


__all__ = [
    "LevelOperators",
    "SourceOperator",
    "SweepPlan",
    "TargetOperator",
    "butterfly_sweep",
    "level_operators",
    "max_interaction_level",
    "plan_sweep",
    "retirement_levels",
    "select_source_operator",
    "select_target_operator",
    "uses_crossover",
]
