"""Tests for the per-box coefficient stores."""

import jax.numpy as jnp
import numpy as np
import pytest

from jaxfly.errors import BindingStateError
from jaxfly.runtime.bindings import make_box_binding
from jaxfly.tree import NDTree


@pytest.fixture
def tree():
    points = np.random.default_rng(0).uniform(size=(120, 1))
    return NDTree(points, leaf_size=8)


def test_write_and_read_level(tree):
    binding = make_box_binding(tree, rank=4)
    binding.resize(1, 3)
    values = jnp.arange(tree.num_boxes(1) * 3 * 4).reshape(-1, 3, 4) + 0j

    binding.write(1, values)

    assert binding.is_sized(1)
    assert binding.is_written(1)
    assert binding.shape(1) == (tree.num_boxes(1), 3, 4)
    np.testing.assert_allclose(binding.level_values(1), values)
    box = tree.boxes(1)[1]
    np.testing.assert_allclose(binding[box], values[1])


def test_unsized_slot_access_raises(tree):
    binding = make_box_binding(tree, rank=2)

    with pytest.raises(BindingStateError):
        binding.level_values(0)
    with pytest.raises(BindingStateError):
        binding.write(0, jnp.zeros((1, 1, 2), dtype=jnp.complex128))
    with pytest.raises(BindingStateError):
        binding[tree.boxes(0)[0]]


def test_sized_but_unwritten_level_raises(tree):
    binding = make_box_binding(tree, rank=2)
    binding.resize(0, 5)

    with pytest.raises(BindingStateError):
        binding.level_values(0)


def test_slots_are_written_once(tree):
    binding = make_box_binding(tree, rank=2)
    binding.resize(0, 1)
    binding.write(0, jnp.ones((1, 1, 2), dtype=jnp.complex128))

    with pytest.raises(BindingStateError):
        binding.write(0, jnp.ones((1, 1, 2), dtype=jnp.complex128))
    with pytest.raises(BindingStateError):
        binding.resize(0, 2)


def test_write_checks_shape(tree):
    binding = make_box_binding(tree, rank=3)
    binding.resize(0, 2)

    with pytest.raises(BindingStateError):
        binding.write(0, jnp.zeros((1, 3, 3), dtype=jnp.complex128))


def test_release_returns_level_to_unsized(tree):
    binding = make_box_binding(tree, rank=1)
    binding.resize(0, 1)
    binding.write(0, jnp.zeros((1, 1, 1), dtype=jnp.complex128))

    binding.release(0)

    assert not binding.is_sized(0)
    binding.resize(0, 4)
    assert binding.shape(0) == (1, 4, 1)


def test_resize_rejects_missing_level(tree):
    binding = make_box_binding(tree, rank=1)

    with pytest.raises(IndexError):
        binding.resize(tree.levels(), 1)
