"""Tensor Chebyshev grids and Lagrange bases on boxes."""

from __future__ import annotations

from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, jaxtyped

from ..errors import ConfigurationError


class ChebyshevGrid(NamedTuple):
    """Chebyshev points of the first kind on the reference box ``[-1, 1]^dim``.

    Attributes
    ----------
    order:
        Points per dimension.
    dim:
        Spatial dimension.
    nodes_1d:
        ``(order,)`` one-dimensional nodes.
    nodes:
        ``(order ** dim, dim)`` tensor grid, flattened in ``ij`` order so the
        last dimension varies fastest.
    """

    order: int
    dim: int
    nodes_1d: Array
    nodes: Array

    @property
    def rank(self: "ChebyshevGrid") -> int:
        return self.order**self.dim


def chebyshev_nodes(order: int) -> np.ndarray:
    """``cos((2k + 1) pi / (2 order))`` for ``k = 0 .. order-1``."""
    k = np.arange(order, dtype=np.float64)
    return np.cos((2.0 * k + 1.0) * np.pi / (2.0 * order))


def make_chebyshev_grid(order: int, dim: int) -> ChebyshevGrid:
    if order < 1:
        raise ConfigurationError("order must be >= 1")
    if dim < 1:
        raise ConfigurationError("dim must be >= 1")
    nodes_1d = chebyshev_nodes(order)
    mesh = np.meshgrid(*([nodes_1d] * dim), indexing="ij")
    nodes = np.stack([m.reshape(-1) for m in mesh], axis=-1)
    return ChebyshevGrid(
        order=order,
        dim=dim,
        nodes_1d=jnp.asarray(nodes_1d),
        nodes=jnp.asarray(nodes),
    )


def _lagrange_1d(nodes_1d: Array, u: Array) -> Array:
    eye = jnp.eye(nodes_1d.shape[0], dtype=bool)
    denom = jnp.where(eye, 1.0, nodes_1d[:, None] - nodes_1d[None, :])
    numer = jnp.where(eye, 1.0, (u - nodes_1d)[None, :])
    return jnp.prod(numer / denom, axis=1)


def lagrange_basis(nodes_1d: Array, u: Array) -> Array:
    """Tensor Lagrange basis at reference coordinates ``u`` of shape ``(dim,)``.

    Returns the ``(order ** dim,)`` basis values ordered like
    :attr:`ChebyshevGrid.nodes`.
    """

    per_dim = jax.vmap(_lagrange_1d, in_axes=(None, 0))(nodes_1d, u)
    values = per_dim[0]
    for d in range(1, u.shape[0]):
        values = (values[:, None] * per_dim[d][None, :]).reshape(-1)
    return values


@jax.jit
@jaxtyped(typechecker=beartype)
def interpolation_matrix(
    nodes_1d: Array,
    points: Array,
    centers: Array,
    half_widths: Array,
) -> Array:
    """Lagrange basis of per-point boxes evaluated at ``points``.

    ``points``, ``centers`` and ``half_widths`` are ``(..., dim)``; the box of
    ``points[i]`` is given by ``centers[i]`` and ``half_widths[i]``. Returns
    ``(..., order ** dim)``.
    """

    dim = points.shape[-1]
    rel = (points - centers) / half_widths
    flat = jax.vmap(lagrange_basis, in_axes=(None, 0))(nodes_1d, rel.reshape(-1, dim))
    return flat.reshape(rel.shape[:-1] + (flat.shape[-1],))


@jax.jit
@jaxtyped(typechecker=beartype)
def box_nodes(centers: Array, half_widths: Array, grid_nodes: Array) -> Array:
    """Chebyshev nodes of every box: ``(num_boxes, rank, dim)``."""
    return centers[:, None, :] + half_widths[:, None, :] * grid_nodes[None, :, :]


__all__ = [
    "ChebyshevGrid",
    "box_nodes",
    "chebyshev_nodes",
    "interpolation_matrix",
    "lagrange_basis",
    "make_chebyshev_grid",
]
