"""Host-side partitioning of the dense transfer blocks.

Each butterfly transfer evaluates a dense kernel block between two sets of
Chebyshev nodes or points. With ``rank = order ** dim`` these blocks grow
quickly in higher dimensions, so the drivers split their rows into pieces
holding at most ``max_entries`` kernel entries and evaluate them one by one.
"""

from __future__ import annotations

from typing import Iterator, Optional

from ..errors import ConfigurationError

# About 256 MiB of complex128 kernel values per block.
DEFAULT_BLOCK_ENTRIES = 1 << 24


def rows_per_block(
    num_rows: int, entries_per_row: int, max_entries: Optional[int]
) -> int:
    """Number of rows that fit a block of ``max_entries`` (``None``: all)."""
    if max_entries is None:
        return max(num_rows, 1)
    if max_entries < 1:
        raise ConfigurationError("max_entries must be >= 1")
    return max(1, min(num_rows, max_entries // max(entries_per_row, 1)))


def block_slices(num_rows: int, step: int) -> Iterator[slice]:
    for start in range(0, num_rows, step):
        yield slice(start, min(start + step, num_rows))


__all__ = ["DEFAULT_BLOCK_ENTRIES", "block_slices", "rows_per_block"]
