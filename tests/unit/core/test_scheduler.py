"""Tests for operator selection, sweep planning and sparse routing."""

import itertools

import jax.numpy as jnp
import numpy as np
import pytest

from jaxfly.errors import ConfigurationError
from jaxfly.kernels import FourierKernel
from jaxfly.operators.compression import ChebyshevCompression
from jaxfly.runtime.bindings import make_box_binding
from jaxfly.runtime.scheduler import (
    SourceOperator,
    TargetOperator,
    butterfly_sweep,
    level_operators,
    max_interaction_level,
    plan_sweep,
    retirement_levels,
    select_source_operator,
    select_target_operator,
    uses_crossover,
)
from jaxfly.tree import NDTree


def _uniform_tree(n: int, dim: int = 1, leaf_size: int = 16, seed: int = 0):
    points = np.random.default_rng(seed).uniform(size=(n, dim))
    return NDTree(points, leaf_size)


@pytest.mark.parametrize(
    "level, source_is_leaf, expected",
    [
        (0, False, SourceOperator.S2M),
        (2, True, SourceOperator.S2M),
        (1, False, SourceOperator.M2M),
        (2, False, SourceOperator.M2M),
        (3, False, SourceOperator.S2L),
        (5, False, SourceOperator.S2L),
    ],
)
def test_source_rule_table(level, source_is_leaf, expected):
    assert select_source_operator(level, 3, source_is_leaf) is expected


@pytest.mark.parametrize(
    "level, target_is_leaf, expected",
    [
        (6, False, TargetOperator.L2T),
        (2, True, TargetOperator.L2T),
        (4, False, TargetOperator.L2L),
        (3, False, TargetOperator.M2T),
        (0, False, TargetOperator.M2T),
    ],
)
def test_target_rule_table(level, target_is_leaf, expected):
    assert select_target_operator(level, 3, 6, target_is_leaf) is expected


def test_every_triple_gets_exactly_one_rule_per_side():
    source_tree = _uniform_tree(900, seed=1)
    target_tree = _uniform_tree(700, seed=2)
    plan = plan_sweep(source_tree, target_tree, ChebyshevCompression(order=4))
    crossover_levels = []

    for level in range(plan.max_level + 1):
        ops = level_operators(plan, source_tree, target_tree, level)
        assert len(ops.source_ops) == source_tree.num_boxes(plan.max_level - level)
        assert len(ops.target_ops) == target_tree.num_boxes(level)
        for source_op, target_op in itertools.product(ops.source_ops, ops.target_ops):
            assert isinstance(source_op, SourceOperator)
            assert isinstance(target_op, TargetOperator)
        source_masks = [ops.source_rows(op) for op in SourceOperator]
        target_masks = [ops.target_rows(op) for op in TargetOperator]
        np.testing.assert_array_equal(np.sum(source_masks, axis=0), 1)
        np.testing.assert_array_equal(np.sum(target_masks, axis=0), 1)
        if ops.crossover:
            crossover_levels.append(level)

    assert crossover_levels == [plan.split_level]


def test_rules_follow_the_split_level():
    source_tree = _uniform_tree(1000, seed=3)
    target_tree = _uniform_tree(1000, seed=4)
    plan = plan_sweep(source_tree, target_tree, ChebyshevCompression(order=4))

    for level in range(plan.max_level + 1):
        ops = level_operators(plan, source_tree, target_tree, level)
        if level == 0:
            assert set(ops.source_ops) == {SourceOperator.S2M}
        elif level < plan.split_level:
            assert set(ops.source_ops) == {SourceOperator.M2M}
        else:
            assert set(ops.source_ops) == {SourceOperator.S2L}
        if level == plan.max_level:
            assert set(ops.target_ops) == {TargetOperator.L2T}
        elif level > plan.split_level:
            assert set(ops.target_ops) == {TargetOperator.L2L}
        else:
            assert set(ops.target_ops) == {TargetOperator.M2T}
        assert uses_crossover(level, plan.split_level) is (level == plan.split_level)


def test_plan_uses_the_shallower_tree():
    deep = _uniform_tree(2000, leaf_size=4, seed=5)
    shallow = _uniform_tree(500, seed=6)
    compression = ChebyshevCompression(order=5)

    plan = plan_sweep(deep, shallow, compression)

    assert plan.max_level == shallow.levels() - 1
    assert plan.max_level == max_interaction_level(deep, shallow)
    assert plan.split_level == plan.max_level // 2
    assert (plan.rank, plan.sparse_threshold, plan.dim) == (5, 5, 1)


def test_single_leaf_trees_are_rejected():
    tree = _uniform_tree(10)

    with pytest.raises(ConfigurationError):
        plan_sweep(tree, tree, ChebyshevCompression())


def test_two_level_trees_are_rejected():
    points = np.linspace(0.0, 1.0, 20)[:, None]
    tree = NDTree(points, leaf_size=16)

    assert tree.levels() == 2
    with pytest.raises(ConfigurationError, match="max_L=1"):
        butterfly_sweep(FourierKernel(), tree, tree, jnp.ones(20, dtype=jnp.complex128))


def test_dimension_mismatch_is_rejected():
    with pytest.raises(ConfigurationError, match="dimension"):
        plan_sweep(
            _uniform_tree(200, dim=1),
            _uniform_tree(200, dim=2),
            ChebyshevCompression(),
        )


def test_charge_shape_is_checked():
    tree = _uniform_tree(600)

    with pytest.raises(ConfigurationError, match="charges"):
        butterfly_sweep(FourierKernel(), tree, tree, jnp.ones(5, dtype=jnp.complex128))


def test_foreign_bindings_are_rejected():
    source_tree = _uniform_tree(600, seed=7)
    target_tree = _uniform_tree(600, seed=8)
    charges = jnp.ones(600, dtype=jnp.complex128)

    with pytest.raises(ConfigurationError, match="bindings"):
        butterfly_sweep(
            FourierKernel(),
            source_tree,
            target_tree,
            charges,
            make_box_binding(target_tree, 8),
            make_box_binding(target_tree, 8),
        )


def test_bindings_are_empty_after_the_sweep():
    source_tree = _uniform_tree(600, seed=9)
    target_tree = _uniform_tree(500, seed=10)
    compression = ChebyshevCompression(order=4)
    multipoles = make_box_binding(source_tree, compression.rank(1))
    locals_ = make_box_binding(target_tree, compression.rank(1))

    butterfly_sweep(
        FourierKernel(),
        source_tree,
        target_tree,
        jnp.ones(600, dtype=jnp.complex128),
        multipoles,
        locals_,
        compression=compression,
    )

    assert not any(multipoles.is_sized(level) for level in range(source_tree.levels()))
    assert not any(locals_.is_sized(level) for level in range(target_tree.levels()))


def test_retirement_picks_the_coarsest_sparse_level():
    cluster = np.linspace(0.0, 0.05, 200)
    outliers = np.array([0.6, 0.8, 0.95])
    tree = NDTree(np.r_[cluster, outliers][:, None], leaf_size=8)

    retired = retirement_levels(tree, threshold=4, last_level=3)

    in_cluster = tree.permutation < cluster.shape[0]
    assert (retired[in_cluster] == -1).all()
    np.testing.assert_array_equal(retired[~in_cluster], 1)
