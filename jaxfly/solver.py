"""Preset-first butterfly transform facade for jaxfly."""

from __future__ import annotations

import logging
import time
from typing import NamedTuple, Optional, Tuple, Union

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array

from .config import (
    PRESET_ORDERS,
    ButterflyAdvancedConfig,
    ButterflyPreset,
)
from .errors import ConfigurationError
from .kernels import KernelAdapter, check_kernel
from .operators.compression import ChebyshevCompression
from .runtime.reference import ErrorReport, direct_matvec, relative_errors
from .runtime.scheduler import butterfly_sweep
from .tree import NDTree

logger = logging.getLogger(__name__)


class ButterflyResult(NamedTuple):
    """Output of :meth:`ButterflyTransform.evaluate`.

    ``exact`` and ``errors`` are ``None`` unless the evaluation was checked
    against direct summation.
    """

    values: Array
    exact: Optional[Array]
    errors: Optional[ErrorReport]


def _normalize_preset(preset: Union[ButterflyPreset, str]) -> ButterflyPreset:
    if isinstance(preset, ButterflyPreset):
        return preset
    return ButterflyPreset(str(preset).strip().lower())


def _resolve_compression(
    preset: ButterflyPreset,
    advanced: ButterflyAdvancedConfig,
) -> ChebyshevCompression:
    order = advanced.compression.order
    if order is None:
        order = PRESET_ORDERS[preset]
    return ChebyshevCompression(
        order=int(order),
        sparse_threshold=advanced.compression.sparse_threshold,
        m2l_chunk_size=advanced.compression.m2l_chunk_size,
    )


def _as_points(points: Array, name: str) -> np.ndarray:
    pts = np.asarray(points)
    if pts.ndim == 1:
        pts = pts[:, None]
    if pts.ndim != 2:
        raise ConfigurationError(f"{name} must have shape (n, dim)")
    return pts


class ButterflyTransform:
    """Simplified, preset-first high-level butterfly API.

    Parameters
    ----------
    kernel:
        Amplitude/phase kernel, e.g. :class:`jaxfly.kernels.FourierKernel`.
    preset:
        Accuracy/speed preset; selects the interpolation order.
    advanced:
        Optional overrides for tree construction and compression.
    """

    def __init__(
        self,
        kernel: KernelAdapter,
        *,
        preset: Union[ButterflyPreset, str] = ButterflyPreset.BALANCED,
        advanced: Optional[ButterflyAdvancedConfig] = None,
    ):
        self.kernel = check_kernel(kernel)
        self.preset = _normalize_preset(preset)
        self.advanced = ButterflyAdvancedConfig() if advanced is None else advanced
        if self.advanced.direct_chunk_size < 1:
            raise ConfigurationError("direct_chunk_size must be >= 1")
        self.compression = _resolve_compression(self.preset, self.advanced)

    @property
    def order(self: "ButterflyTransform") -> int:
        return int(self.compression.order)

    def build_trees(
        self: "ButterflyTransform",
        sources: Array,
        targets: Array,
    ) -> Tuple[NDTree, NDTree]:
        sources = _as_points(sources, "sources")
        targets = _as_points(targets, "targets")
        if sources.shape[1] != targets.shape[1]:
            raise ConfigurationError(
                f"source dimension {sources.shape[1]} does not match "
                f"target dimension {targets.shape[1]}"
            )
        tree_cfg = self.advanced.tree
        source_tree = NDTree(
            sources, tree_cfg.leaf_size, max_levels=tree_cfg.max_levels
        )
        target_tree = NDTree(
            targets, tree_cfg.leaf_size, max_levels=tree_cfg.max_levels
        )
        return source_tree, target_tree

    def apply(
        self: "ButterflyTransform",
        sources: Array,
        charges: Array,
        targets: Array,
    ) -> Array:
        """Approximate ``sum_n K(t_m, s_n) f_n`` at every target."""

        source_tree, target_tree = self.build_trees(sources, targets)
        if source_tree.levels() == 1 and target_tree.levels() == 1:
            logger.info(
                "single-leaf source and target trees (%d x %d points); "
                "evaluating directly",
                target_tree.num_points,
                source_tree.num_points,
            )
            return self.direct(sources, charges, targets)

        start = time.perf_counter()
        values = butterfly_sweep(
            self.kernel,
            source_tree,
            target_tree,
            jnp.asarray(charges),
            compression=self.compression,
        )
        # Dispatch is asynchronous; failures and timings surface here.
        values.block_until_ready()
        logger.info(
            "butterfly: %d sources (%d levels) -> %d targets (%d levels), "
            "order %d in %.3fs",
            source_tree.num_points,
            source_tree.levels(),
            target_tree.num_points,
            target_tree.levels(),
            self.order,
            time.perf_counter() - start,
        )
        return values

    def direct(
        self: "ButterflyTransform",
        sources: Array,
        charges: Array,
        targets: Array,
    ) -> Array:
        """Exact reference values by direct summation."""

        return direct_matvec(
            self.kernel,
            _as_points(sources, "sources"),
            charges,
            _as_points(targets, "targets"),
            chunk_size=self.advanced.direct_chunk_size,
        )

    def evaluate(
        self: "ButterflyTransform",
        sources: Array,
        charges: Array,
        targets: Array,
        *,
        check: bool = False,
        strict: bool = False,
    ) -> ButterflyResult:
        """Run :meth:`apply`, optionally verified against :meth:`direct`."""

        values = self.apply(sources, charges, targets)
        if not check:
            return ButterflyResult(values=values, exact=None, errors=None)
        exact = self.direct(sources, charges, targets)
        errors = relative_errors(values, exact, strict=strict)
        logger.info(
            "relative error: aggregate %.3e, average %.3e, maximum %.3e",
            errors.aggregate,
            errors.average,
            errors.maximum,
        )
        return ButterflyResult(values=values, exact=exact, errors=errors)


__all__ = ["ButterflyResult", "ButterflyTransform"]
