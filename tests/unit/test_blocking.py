import pytest

from jaxfly import (
    ButterflyAdvancedConfig,
    ButterflyTransform,
    CompressionConfig,
    FourierKernel,
)
from jaxfly.errors import ConfigurationError
from jaxfly.operators.compression import ChebyshevCompression
from jaxfly.runtime.blocking import DEFAULT_BLOCK_ENTRIES, block_slices, rows_per_block


def test_rows_per_block_respects_the_entry_budget():
    assert rows_per_block(100, 512 * 512, None) == 100
    assert rows_per_block(100, 512 * 512, 4 * 512 * 512) == 4
    assert rows_per_block(100, 512 * 512, 10) == 1
    assert rows_per_block(3, 1, 1000) == 3
    with pytest.raises(ConfigurationError):
        rows_per_block(10, 1, 0)


def test_block_slices_cover_every_row_once():
    slices = list(block_slices(10, 4))

    assert slices == [slice(0, 4), slice(4, 8), slice(8, 10)]
    assert list(block_slices(0, 4)) == []


def test_block_entries_follow_the_m2l_chunk_size():
    assert ChebyshevCompression(order=8).block_entries(3) == DEFAULT_BLOCK_ENTRIES
    assert ChebyshevCompression(order=8, m2l_chunk_size=2).block_entries(3) == 2 * 512**2
    with pytest.raises(ConfigurationError):
        ChebyshevCompression(m2l_chunk_size=0)


def test_transform_forwards_m2l_chunk_size():
    advanced = ButterflyAdvancedConfig(compression=CompressionConfig(m2l_chunk_size=16))

    transform = ButterflyTransform(FourierKernel(), advanced=advanced)

    assert transform.compression.m2l_chunk_size == 16
    assert transform.compression.block_entries(1) == 16 * 8**2
