"""Preset-first configuration model for jaxfly."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ButterflyPreset(str, Enum):
    """User-facing quality/speed presets."""

    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"


# Chebyshev points per dimension used by each preset.
PRESET_ORDERS = {
    ButterflyPreset.FAST: 6,
    ButterflyPreset.BALANCED: 8,
    ButterflyPreset.ACCURATE: 12,
}


@dataclass(frozen=True)
class TreeConfig:
    """Spatial tree construction overrides."""

    leaf_size: int = 16
    max_levels: int = 20


@dataclass(frozen=True)
class CompressionConfig:
    """Interpolation rank and routing overrides.

    ``order`` is the number of Chebyshev points per dimension (the rank of a
    box pair is ``order ** dim``). ``sparse_threshold`` is the point count at
    or below which a box bypasses the compressed representation; ``None``
    uses the rank. ``m2l_chunk_size`` is the number of (target box, source
    box) pairs whose dense kernel block M2L evaluates at once; the other
    dense transfers are bounded by the same number of kernel entries.
    ``None`` sizes every block to about 2**24 entries.
    """

    order: Optional[int] = None
    sparse_threshold: Optional[int] = None
    m2l_chunk_size: Optional[int] = None


@dataclass(frozen=True)
class ButterflyAdvancedConfig:
    """Aggregate container for all advanced override groups."""

    tree: TreeConfig = TreeConfig()
    compression: CompressionConfig = CompressionConfig()
    direct_chunk_size: int = 256
