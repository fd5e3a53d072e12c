"""Multipole-side transfers of the butterfly: S2M, M2M and M2T.

A multipole table at sweep level ``L`` has shape
``(num_source_boxes, num_target_boxes, rank)``: row ``b`` holds, for every
target box ``a`` on level ``L``, equivalent charges placed on the Chebyshev
nodes of source box ``b``. For any target ``x`` in box ``a``

    sum_{s in b} K(x, s) f_s  ~=  sum_k K(x, s_k^b) M[b, a, k].

The phase is demodulated against the target box center, so no spatial
translation is needed when boxes change level.
"""

from __future__ import annotations

from functools import partial
from typing import Optional

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, jaxtyped

from ..kernels import KernelAdapter, pairwise, phase_factors
from ..operators.chebyshev import box_nodes, interpolation_matrix
from ..runtime.blocking import block_slices, rows_per_block


def _demodulation(
    kernel: KernelAdapter,
    target_centers: Array,
    nodes: Array,
) -> Array:
    # (num_source_boxes, num_target_boxes, rank)
    num_boxes, rank, dim = nodes.shape
    factors = phase_factors(kernel, target_centers, nodes.reshape(-1, dim), -1.0)
    return jnp.transpose(
        factors.reshape(target_centers.shape[0], num_boxes, rank), (1, 0, 2)
    )


@partial(jax.jit, static_argnames=("kernel", "num_boxes"))
@jaxtyped(typechecker=beartype)
def source_to_multipole(
    kernel: KernelAdapter,
    nodes_1d: Array,
    grid_nodes: Array,
    points: Array,
    charges: Array,
    point_boxes: Array,
    box_centers: Array,
    box_half_widths: Array,
    target_centers: Array,
    *,
    num_boxes: int,
) -> Array:
    """S2M: equivalent charges of each source box from its raw points.

    Parameters
    ----------
    points, charges, point_boxes:
        Source points ``(n, dim)``, their charges ``(n,)`` and the index of
        their box on the source level ``(n,)``.
    box_centers, box_half_widths:
        Geometry of the ``num_boxes`` source boxes.
    target_centers:
        Centers of the target boxes the phase is demodulated against.
    """

    interp = interpolation_matrix(
        nodes_1d,
        points,
        box_centers[point_boxes],
        box_half_widths[point_boxes],
    )
    modulation = phase_factors(kernel, target_centers, points, 1.0)
    weighted = jnp.transpose(modulation) * charges[:, None]
    contributions = weighted[:, :, None] * interp[:, None, :]
    summed = jax.ops.segment_sum(contributions, point_boxes, num_segments=num_boxes)
    nodes = box_nodes(box_centers, box_half_widths, grid_nodes)
    return _demodulation(kernel, target_centers, nodes) * summed


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _multipole_to_multipole_block(
    kernel: KernelAdapter,
    nodes_1d: Array,
    grid_nodes: Array,
    child_multipoles: Array,
    children: Array,
    target_parents: Array,
    child_centers: Array,
    child_half_widths: Array,
    box_centers: Array,
    box_half_widths: Array,
    target_centers: Array,
) -> Array:
    dim = box_centers.shape[1]
    valid = children >= 0
    safe = jnp.where(valid, children, 0)

    child_nodes = box_nodes(child_centers, child_half_widths, grid_nodes)
    rank = child_nodes.shape[1]
    gathered_nodes = child_nodes[safe]
    interp = interpolation_matrix(
        nodes_1d,
        gathered_nodes,
        jnp.broadcast_to(box_centers[:, None, None, :], gathered_nodes.shape),
        jnp.broadcast_to(box_half_widths[:, None, None, :], gathered_nodes.shape),
    )

    modulation = phase_factors(
        kernel, target_centers, child_nodes.reshape(-1, dim), 1.0
    ).reshape(target_centers.shape[0], child_nodes.shape[0], rank)
    weighted = child_multipoles[:, target_parents, :] * jnp.transpose(
        modulation, (1, 0, 2)
    )
    gathered = weighted[safe] * valid[:, :, None, None]
    summed = jnp.einsum("bcak,bckq->baq", gathered, interp)

    nodes = box_nodes(box_centers, box_half_widths, grid_nodes)
    return _demodulation(kernel, target_centers, nodes) * summed


def multipole_to_multipole(
    kernel: KernelAdapter,
    nodes_1d: Array,
    grid_nodes: Array,
    child_multipoles: Array,
    children: Array,
    target_parents: Array,
    child_centers: Array,
    child_half_widths: Array,
    box_centers: Array,
    box_half_widths: Array,
    target_centers: Array,
    *,
    max_entries: Optional[int] = None,
) -> Array:
    """M2M: merge the children's multipoles into each source box.

    ``child_multipoles`` is the previous level's table
    ``(num_children, num_parent_targets, rank)``; the children's
    equivalent charges for ``target_parents[a]`` are re-interpolated onto the
    parent's nodes with the phase of target box ``a``. Source boxes are
    merged in blocks whose interpolation operators fit ``max_entries``.
    """

    rank = grid_nodes.shape[0]
    fanout = children.shape[1]
    per_box = fanout * rank * (rank + target_centers.shape[0])
    step = rows_per_block(box_centers.shape[0], per_box, max_entries)
    blocks = [
        _multipole_to_multipole_block(
            kernel,
            nodes_1d,
            grid_nodes,
            child_multipoles,
            children[block],
            target_parents,
            child_centers,
            child_half_widths,
            box_centers[block],
            box_half_widths[block],
            target_centers,
        )
        for block in block_slices(box_centers.shape[0], step)
    ]
    return jnp.concatenate(blocks, axis=0)


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _multipole_to_target_block(
    kernel: KernelAdapter,
    grid_nodes: Array,
    multipoles: Array,
    box_centers: Array,
    box_half_widths: Array,
    points: Array,
    point_target_boxes: Array,
) -> Array:
    dim = points.shape[1]
    nodes = box_nodes(box_centers, box_half_widths, grid_nodes).reshape(-1, dim)
    values = pairwise(kernel.value, points, nodes)
    coeffs = jnp.transpose(multipoles[:, point_target_boxes, :], (1, 0, 2))
    return jnp.sum(values * coeffs.reshape(points.shape[0], -1), axis=1)


def multipole_to_target(
    kernel: KernelAdapter,
    grid_nodes: Array,
    multipoles: Array,
    box_centers: Array,
    box_half_widths: Array,
    points: Array,
    point_target_boxes: Array,
    *,
    max_entries: Optional[int] = None,
) -> Array:
    """M2T: evaluate a multipole table directly at target points.

    ``point_target_boxes[i]`` is the column of ``multipoles`` (the target box)
    whose equivalent charges are valid at ``points[i]``. Points are evaluated
    in blocks whose kernel against every source node fits ``max_entries``.
    """

    per_point = box_centers.shape[0] * grid_nodes.shape[0]
    step = rows_per_block(points.shape[0], per_point, max_entries)
    blocks = [
        _multipole_to_target_block(
            kernel,
            grid_nodes,
            multipoles,
            box_centers,
            box_half_widths,
            points[block],
            point_target_boxes[block],
        )
        for block in block_slices(points.shape[0], step)
    ]
    if not blocks:
        return jnp.zeros((0,), dtype=jnp.result_type(multipoles.dtype, jnp.complex64))
    return jnp.concatenate(blocks)


__all__ = [
    "multipole_to_multipole",
    "multipole_to_target",
    "source_to_multipole",
]
