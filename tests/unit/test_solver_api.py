"""jaxfly facade configuration tests."""

import numpy as np
import pytest

from jaxfly import (
    ButterflyAdvancedConfig,
    ButterflyPreset,
    ButterflyTransform,
    CompressionConfig,
    ConfigurationError,
    FourierKernel,
    TreeConfig,
)


@pytest.mark.parametrize(
    "preset, order",
    [
        (ButterflyPreset.FAST, 6),
        ("balanced", 8),
        (" ACCURATE ", 12),
    ],
)
def test_preset_selects_interpolation_order(preset, order):
    transform = ButterflyTransform(FourierKernel(), preset=preset)

    assert transform.order == order
    assert transform.compression.threshold(1) == order


def test_advanced_config_overrides_preset():
    advanced = ButterflyAdvancedConfig(
        tree=TreeConfig(leaf_size=4),
        compression=CompressionConfig(order=5, sparse_threshold=2),
    )
    transform = ButterflyTransform(
        FourierKernel(), preset=ButterflyPreset.ACCURATE, advanced=advanced
    )

    assert transform.order == 5
    assert transform.compression.threshold(2) == 2
    source_tree, target_tree = transform.build_trees(
        np.random.default_rng(0).uniform(size=(50, 2)),
        np.random.default_rng(1).uniform(size=(40, 2)),
    )
    assert source_tree.leaf_size == target_tree.leaf_size == 4


def test_unknown_preset_raises():
    with pytest.raises(ValueError):
        ButterflyTransform(FourierKernel(), preset="fastest")


def test_invalid_kernel_is_rejected_at_construction():
    with pytest.raises(ConfigurationError):
        ButterflyTransform(object())


def test_build_trees_accepts_flat_points():
    transform = ButterflyTransform(FourierKernel())

    source_tree, target_tree = transform.build_trees(np.linspace(0, 1, 30), np.zeros(5))

    assert source_tree.dim == target_tree.dim == 1


def test_build_trees_rejects_dimension_mismatch():
    transform = ButterflyTransform(FourierKernel())

    with pytest.raises(ConfigurationError):
        transform.build_trees(np.zeros((5, 2)), np.zeros((5, 3)))


def test_evaluate_without_check_skips_reference():
    transform = ButterflyTransform(FourierKernel())
    sources = np.linspace(0, 1, 10)[:, None]

    result = transform.evaluate(sources, np.ones(10) + 0j, sources)

    assert result.exact is None
    assert result.errors is None
    assert result.values.shape == (10,)
