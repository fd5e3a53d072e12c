"""Compression policies for the multipole-to-local switch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from jaxtyping import Array

from ..downward.local_expansions import multipole_to_local
from ..errors import ConfigurationError
from ..kernels import KernelAdapter
from ..runtime.blocking import DEFAULT_BLOCK_ENTRIES
from .chebyshev import ChebyshevGrid, make_chebyshev_grid


@dataclass(frozen=True)
class ChebyshevCompression:
    """Tensor Chebyshev interpolation of a fixed order.

    ``order`` (points per dimension) is the accuracy/rank control of every
    transfer: a box pair is represented by ``order ** dim`` coefficients.
    Boxes holding at most ``sparse_threshold`` points (default: the rank)
    bypass the compressed representation and are handled from their raw
    points by M2T and S2L. ``m2l_chunk_size`` caps the box pairs of one
    dense M2L block and, through :meth:`block_entries`, the size of every
    other dense block of the sweep.
    """

    order: int = 8
    sparse_threshold: Optional[int] = None
    m2l_chunk_size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.order < 1:
            raise ConfigurationError("order must be >= 1")
        if self.sparse_threshold is not None and self.sparse_threshold < 0:
            raise ConfigurationError("sparse_threshold must be >= 0")
        if self.m2l_chunk_size is not None and self.m2l_chunk_size < 1:
            raise ConfigurationError("m2l_chunk_size must be >= 1")

    def grid(self: "ChebyshevCompression", dim: int) -> ChebyshevGrid:
        return make_chebyshev_grid(self.order, dim)

    def rank(self: "ChebyshevCompression", dim: int) -> int:
        return self.order**dim

    def threshold(self: "ChebyshevCompression", dim: int) -> int:
        if self.sparse_threshold is None:
            return self.rank(dim)
        return int(self.sparse_threshold)

    def block_entries(self: "ChebyshevCompression", dim: int) -> int:
        """Kernel entries a single dense transfer block may hold."""
        if self.m2l_chunk_size is None:
            return DEFAULT_BLOCK_ENTRIES
        return int(self.m2l_chunk_size) * self.rank(dim) ** 2

    def multipole_to_local(
        self: "ChebyshevCompression",
        kernel: KernelAdapter,
        grid: ChebyshevGrid,
        child_multipoles: Array,
        children: Array,
        target_parents: Array,
        child_centers: Array,
        child_half_widths: Array,
        source_centers: Array,
        target_centers: Array,
        target_half_widths: Array,
        active_targets: Array,
    ) -> Array:
        """The crossover step; returns ``(num_targets, num_sources, rank)``."""
        return multipole_to_local(
            kernel,
            grid.nodes,
            child_multipoles,
            children,
            target_parents,
            child_centers,
            child_half_widths,
            source_centers,
            target_centers,
            target_half_widths,
            active_targets,
            max_entries=self.block_entries(grid.dim),
        )


__all__ = ["ChebyshevCompression"]
