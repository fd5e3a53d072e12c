"""Tests for Chebyshev grids and the tensor Lagrange basis."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jaxfly.errors import ConfigurationError
from jaxfly.operators.chebyshev import (
    box_nodes,
    chebyshev_nodes,
    interpolation_matrix,
    lagrange_basis,
    make_chebyshev_grid,
)
from jaxfly.operators.compression import ChebyshevCompression


def test_nodes_are_first_kind_points():
    nodes = chebyshev_nodes(4)

    np.testing.assert_allclose(np.cos(4 * np.arccos(nodes)), 0.0, atol=1e-12)
    assert (np.abs(nodes) < 1.0).all()


def test_grid_is_flattened_last_dimension_fastest():
    grid = make_chebyshev_grid(3, 2)

    assert grid.rank == 9
    assert grid.nodes.shape == (9, 2)
    np.testing.assert_allclose(grid.nodes[:3, 0], grid.nodes_1d[0])
    np.testing.assert_allclose(grid.nodes[:3, 1], grid.nodes_1d)


def test_basis_is_cardinal_on_the_grid():
    grid = make_chebyshev_grid(4, 2)
    values = jax.vmap(lagrange_basis, in_axes=(None, 0))(grid.nodes_1d, grid.nodes)

    np.testing.assert_allclose(values, np.eye(grid.rank), atol=1e-12)


def test_basis_reproduces_polynomials():
    grid = make_chebyshev_grid(5, 2)

    def poly(x):
        return 1.0 + x[..., 0] - 2.0 * x[..., 1] ** 2 + x[..., 0] ** 3 * x[..., 1] ** 4

    samples = jax.random.uniform(jax.random.PRNGKey(2), (25, 2), minval=-1.0, maxval=1.0)
    basis = jax.vmap(lagrange_basis, in_axes=(None, 0))(grid.nodes_1d, samples)

    np.testing.assert_allclose(basis @ poly(grid.nodes), poly(samples), atol=1e-10)
    np.testing.assert_allclose(jnp.sum(basis, axis=1), 1.0, atol=1e-12)


def test_interpolation_matrix_maps_boxes_to_reference():
    grid = make_chebyshev_grid(6, 1)
    centers = jnp.array([[0.25], [0.75]])
    half_widths = jnp.full((2, 1), 0.25)
    nodes = box_nodes(centers, half_widths, grid.nodes)
    points = jnp.array([[0.1], [0.6]])

    interp = interpolation_matrix(grid.nodes_1d, points, centers, half_widths)

    assert nodes.shape == (2, 6, 1)
    np.testing.assert_allclose(
        jnp.sum(interp * jnp.exp(nodes[:, :, 0]), axis=1), jnp.exp(points[:, 0]), rtol=1e-5
    )


def test_interpolation_matrix_keeps_leading_shape():
    grid = make_chebyshev_grid(3, 2)
    points = jnp.zeros((4, 5, 2))

    interp = interpolation_matrix(grid.nodes_1d, points, points, jnp.ones_like(points))

    assert interp.shape == (4, 5, 9)


def test_compression_rank_and_threshold():
    compression = ChebyshevCompression(order=4)

    assert compression.rank(2) == 16
    assert compression.threshold(2) == 16
    assert ChebyshevCompression(order=4, sparse_threshold=3).threshold(2) == 3


@pytest.mark.parametrize("kwargs", [{"order": 0}, {"order": 4, "sparse_threshold": -1}])
def test_compression_rejects_invalid_parameters(kwargs):
    with pytest.raises(ConfigurationError):
        ChebyshevCompression(**kwargs)


def test_grid_rejects_invalid_parameters():
    with pytest.raises(ConfigurationError):
        make_chebyshev_grid(3, 0)
