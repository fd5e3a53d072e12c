"""Local-side transfers of the butterfly: M2L, S2L, L2L and L2T.

A local table at sweep level ``L`` has shape
``(num_target_boxes, num_source_boxes, rank)``: entry ``[a, b, j]`` is the
potential of source box ``b`` at the ``j``-th Chebyshev node of target box
``a``, with the phase relative to the source box center removed,

    Lambda[a, b, j] = exp(-2 pi i phase(x_j^a, c_b)) sum_{s in b} K(x_j^a, s) f_s.

The remaining factor is smooth over ``a`` and is recovered anywhere in the
box by Lagrange interpolation.

M2L, S2L and L2L are host-side drivers over jitted blocks; ``max_entries``
bounds the number of kernel entries a single block evaluates.
"""

from __future__ import annotations

from functools import partial
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, jaxtyped

from ..kernels import KernelAdapter, pairwise, phase_factors
from ..operators.chebyshev import box_nodes, interpolation_matrix
from ..runtime.blocking import block_slices, rows_per_block
from ..runtime.dtypes import as_index


def _demodulation(
    kernel: KernelAdapter,
    target_nodes: Array,
    source_centers: Array,
) -> Array:
    # (num_target_boxes, num_source_boxes, rank)
    num_boxes, rank, dim = target_nodes.shape
    factors = phase_factors(
        kernel, target_nodes.reshape(-1, dim), source_centers, -1.0
    )
    return jnp.transpose(
        factors.reshape(num_boxes, rank, source_centers.shape[0]), (0, 2, 1)
    )


def _sum_children(values: Array, children: Array) -> Array:
    """Sum ``values[a, c, :]`` over the children ``c`` of every source box."""
    valid = children >= 0
    safe = jnp.where(valid, children, 0)
    gathered = values[:, safe, :] * valid[None, :, :, None]
    return jnp.sum(gathered, axis=2)


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _multipole_to_local_block(
    kernel: KernelAdapter,
    target_nodes: Array,
    child_nodes: Array,
    coeffs: Array,
) -> Array:
    # (num_targets, num_children, rank) before merging and demodulation
    num_targets, rank, dim = target_nodes.shape
    num_children = child_nodes.shape[0]
    values = pairwise(
        kernel.value, target_nodes.reshape(-1, dim), child_nodes.reshape(-1, dim)
    ).reshape(num_targets, rank, num_children, rank)
    return jnp.einsum("ajck,ack->acj", values, coeffs)


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _merge_children(
    kernel: KernelAdapter,
    per_child: Array,
    children: Array,
    target_nodes: Array,
    source_centers: Array,
) -> Array:
    summed = _sum_children(per_child, children)
    return _demodulation(kernel, target_nodes, source_centers) * summed


def multipole_to_local(
    kernel: KernelAdapter,
    grid_nodes: Array,
    child_multipoles: Array,
    children: Array,
    target_parents: Array,
    child_centers: Array,
    child_half_widths: Array,
    source_centers: Array,
    target_centers: Array,
    target_half_widths: Array,
    active_targets: Array,
    *,
    max_entries: Optional[int] = None,
) -> Array:
    """M2L: switch from multipole to local representation.

    The children's equivalent charges (valid on the parent target box) are
    evaluated at the target box's Chebyshev nodes and merged per source box.
    Target boxes with ``active_targets == False`` get an empty local and are
    never evaluated; the kernel between target and child nodes is formed
    for as many ``(target box, child box)`` pairs at a time as fit
    ``max_entries``.
    """

    num_targets = target_centers.shape[0]
    rank = grid_nodes.shape[0]
    dtype = jnp.result_type(child_multipoles.dtype, jnp.complex64)
    result = jnp.zeros((num_targets, source_centers.shape[0], rank), dtype=dtype)
    active = np.flatnonzero(np.asarray(active_targets))
    num_children = child_centers.shape[0]
    if active.size == 0 or num_children == 0:
        return result

    pairs = rows_per_block(active.size * num_children, rank * rank, max_entries)
    child_step = min(num_children, pairs)
    target_step = max(1, pairs // child_step)

    target_nodes = box_nodes(target_centers, target_half_widths, grid_nodes)
    child_nodes = box_nodes(child_centers, child_half_widths, grid_nodes)
    for block in block_slices(active.size, target_step):
        rows = as_index(active[block])
        nodes = target_nodes[rows]
        coeffs = jnp.transpose(child_multipoles[:, target_parents[rows], :], (1, 0, 2))
        per_child = jnp.concatenate(
            [
                _multipole_to_local_block(
                    kernel, nodes, child_nodes[part], coeffs[:, part]
                )
                for part in block_slices(num_children, child_step)
            ],
            axis=1,
        )
        merged = _merge_children(kernel, per_child, children, nodes, source_centers)
        result = result.at[rows].set(merged.astype(dtype))
    return result


@partial(jax.jit, static_argnames=("kernel", "num_boxes"))
@jaxtyped(typechecker=beartype)
def _source_to_local_block(
    kernel: KernelAdapter,
    grid_nodes: Array,
    points: Array,
    charges: Array,
    point_boxes: Array,
    source_centers: Array,
    target_centers: Array,
    target_half_widths: Array,
    *,
    num_boxes: int,
) -> Array:
    dim = target_centers.shape[1]
    target_nodes = box_nodes(target_centers, target_half_widths, grid_nodes)
    num_targets, rank, _ = target_nodes.shape

    values = pairwise(kernel.value, target_nodes.reshape(-1, dim), points)
    weighted = values * charges[None, :]
    summed = jax.ops.segment_sum(
        jnp.transpose(weighted), point_boxes, num_segments=num_boxes
    )
    summed = jnp.transpose(summed.reshape(num_boxes, num_targets, rank), (1, 0, 2))
    return _demodulation(kernel, target_nodes, source_centers) * summed


def source_to_local(
    kernel: KernelAdapter,
    grid_nodes: Array,
    points: Array,
    charges: Array,
    point_boxes: Array,
    source_centers: Array,
    target_centers: Array,
    target_half_widths: Array,
    *,
    num_boxes: int,
    max_entries: Optional[int] = None,
) -> Array:
    """S2L: local of each ``(target box, source box)`` pair from raw points.

    Points are summed in blocks whose kernel against every target node fits
    ``max_entries``.
    """

    per_point = target_centers.shape[0] * grid_nodes.shape[0]
    step = rows_per_block(points.shape[0], per_point, max_entries)
    total = None
    for block in block_slices(points.shape[0], step):
        part = _source_to_local_block(
            kernel,
            grid_nodes,
            points[block],
            charges[block],
            point_boxes[block],
            source_centers,
            target_centers,
            target_half_widths,
            num_boxes=num_boxes,
        )
        total = part if total is None else total + part
    return total


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _local_to_local_block(
    kernel: KernelAdapter,
    nodes_1d: Array,
    grid_nodes: Array,
    parent_locals: Array,
    target_parents: Array,
    parent_centers: Array,
    parent_half_widths: Array,
    target_centers: Array,
    target_half_widths: Array,
    children: Array,
    child_centers: Array,
    source_centers: Array,
) -> Array:
    dim = target_centers.shape[1]
    target_nodes = box_nodes(target_centers, target_half_widths, grid_nodes)
    num_targets, rank, _ = target_nodes.shape

    interp = interpolation_matrix(
        nodes_1d,
        target_nodes,
        jnp.broadcast_to(
            parent_centers[target_parents][:, None, :], target_nodes.shape
        ),
        jnp.broadcast_to(
            parent_half_widths[target_parents][:, None, :], target_nodes.shape
        ),
    )
    values = jnp.einsum("ajq,acq->acj", interp, parent_locals[target_parents])
    modulation = phase_factors(
        kernel, target_nodes.reshape(-1, dim), child_centers, 1.0
    ).reshape(num_targets, rank, child_centers.shape[0])
    summed = _sum_children(values * jnp.transpose(modulation, (0, 2, 1)), children)
    return _demodulation(kernel, target_nodes, source_centers) * summed


def local_to_local(
    kernel: KernelAdapter,
    nodes_1d: Array,
    grid_nodes: Array,
    parent_locals: Array,
    target_parents: Array,
    parent_centers: Array,
    parent_half_widths: Array,
    target_centers: Array,
    target_half_widths: Array,
    children: Array,
    child_centers: Array,
    source_centers: Array,
    *,
    max_entries: Optional[int] = None,
) -> Array:
    """L2L: refine the parent target box's locals into each target box.

    ``parent_locals`` is the previous level's table
    ``(num_parent_targets, num_children, rank)``, indexed by the children of
    the current source boxes.
    """

    rank = grid_nodes.shape[0]
    per_target = rank * (rank + child_centers.shape[0])
    step = rows_per_block(target_centers.shape[0], per_target, max_entries)
    blocks = [
        _local_to_local_block(
            kernel,
            nodes_1d,
            grid_nodes,
            parent_locals,
            target_parents[block],
            parent_centers,
            parent_half_widths,
            target_centers[block],
            target_half_widths[block],
            children,
            child_centers,
            source_centers,
        )
        for block in block_slices(target_centers.shape[0], step)
    ]
    return jnp.concatenate(blocks, axis=0)


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def local_to_target(
    kernel: KernelAdapter,
    nodes_1d: Array,
    locals_: Array,
    target_centers: Array,
    target_half_widths: Array,
    source_centers: Array,
    points: Array,
    point_boxes: Array,
) -> Array:
    """L2T: interpolate every local of a point's box and restore the phase."""

    interp = interpolation_matrix(
        nodes_1d,
        points,
        target_centers[point_boxes],
        target_half_widths[point_boxes],
    )
    modulation = phase_factors(kernel, points, source_centers, 1.0)
    return jnp.einsum("mb,mbj,mj->m", modulation, locals_[point_boxes], interp)


__all__ = [
    "local_to_local",
    "local_to_target",
    "multipole_to_local",
    "source_to_local",
]
