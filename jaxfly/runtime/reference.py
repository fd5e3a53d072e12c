"""Reference helpers: exact direct summation and relative error reports."""

from __future__ import annotations

import logging
from functools import partial
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, jaxtyped

from ..errors import ConfigurationError, DegenerateNormError
from ..kernels import KernelAdapter, check_kernel, pairwise
from .dtypes import result_dtype

logger = logging.getLogger(__name__)


@partial(jax.jit, static_argnames=("kernel",))
@jaxtyped(typechecker=beartype)
def _direct_block(
    kernel: KernelAdapter,
    sources: Array,
    charges: Array,
    targets: Array,
) -> Array:
    return pairwise(kernel.value, targets, sources) @ charges


def direct_matvec(
    kernel: KernelAdapter,
    sources: Array,
    charges: Array,
    targets: Array,
    *,
    chunk_size: int = 256,
) -> Array:
    """Compute ``sum_n K(t_m, s_n) f_n`` for every target by direct O(N M) sums.

    Targets are processed in blocks of ``chunk_size`` rows so the dense
    kernel block never exceeds ``chunk_size * N`` entries.
    """

    kernel = check_kernel(kernel)
    if chunk_size < 1:
        raise ConfigurationError("chunk_size must be >= 1")
    sources = jnp.asarray(sources)
    targets = jnp.asarray(targets)
    charges = jnp.asarray(charges)
    if sources.ndim != 2 or targets.ndim != 2:
        raise ConfigurationError("sources and targets must have shape (n, dim)")
    if sources.shape[1] != targets.shape[1]:
        raise ConfigurationError(
            f"source dimension {sources.shape[1]} does not match "
            f"target dimension {targets.shape[1]}"
        )
    if charges.shape != (sources.shape[0],):
        raise ConfigurationError(
            f"charges must have shape ({sources.shape[0]},), got {charges.shape}"
        )

    dtype = result_dtype(sources, targets, charges)
    charges = charges.astype(dtype)
    blocks = [
        _direct_block(kernel, sources, charges, targets[start : start + chunk_size])
        for start in range(0, targets.shape[0], chunk_size)
    ]
    if not blocks:
        return jnp.zeros((0,), dtype=dtype)
    return jnp.concatenate(blocks).astype(dtype)


class ErrorReport(NamedTuple):
    """Relative error of an approximation against an exact reference.

    Attributes
    ----------
    aggregate:
        ``sqrt(sum |e - r|^2 / sum |e|^2)`` over the defined targets.
    average, maximum:
        Mean and maximum of the per-target relative errors.
    per_target:
        ``|e_k - r_k| / |e_k|``; ``0`` where both vanish and ``nan`` where
        only the reference vanishes.
    undefined:
        Boolean mask of the targets whose relative error is undefined.
    """

    aggregate: float
    average: float
    maximum: float
    per_target: np.ndarray
    undefined: np.ndarray

    @property
    def undefined_count(self: "ErrorReport") -> int:
        return int(np.count_nonzero(self.undefined))


def relative_errors(
    result: Array,
    exact: Array,
    *,
    strict: bool = False,
) -> ErrorReport:
    """Compare ``result`` with ``exact`` target by target.

    Targets whose exact value is zero while the computed one is not have no
    relative error; they are flagged and excluded from the aggregates, or
    raise :class:`DegenerateNormError` when ``strict`` is set.
    """

    result = np.asarray(result).reshape(-1)
    exact = np.asarray(exact).reshape(-1)
    if result.shape != exact.shape:
        raise ConfigurationError(
            f"result has {result.shape[0]} entries, exact has {exact.shape[0]}"
        )

    diff = np.abs(exact - result)
    norm = np.abs(exact)
    zero_norm = norm == 0.0
    undefined = zero_norm & (diff != 0.0)
    if strict and undefined.any():
        first = int(np.flatnonzero(undefined)[0])
        raise DegenerateNormError(
            f"exact value of target {first} is zero but the result is {result[first]}"
        )

    per_target = np.zeros(result.shape, dtype=np.float64)
    np.divide(diff, norm, out=per_target, where=~zero_norm)
    per_target[undefined] = np.nan
    if undefined.any():
        logger.warning(
            "%d target(s) have a zero exact value and a nonzero result; "
            "excluded from the aggregates",
            int(np.count_nonzero(undefined)),
        )

    defined = ~undefined
    denominator = float(np.sum(norm[defined] ** 2))
    if denominator > 0.0:
        aggregate = float(np.sqrt(np.sum(diff[defined] ** 2) / denominator))
    else:
        aggregate = 0.0
    # Targets with a zero reference carry no relative error of their own.
    counted = ~zero_norm
    if counted.any():
        average = float(np.mean(per_target[counted]))
        maximum = float(np.max(per_target[counted]))
    else:
        average = 0.0
        maximum = 0.0
    return ErrorReport(
        aggregate=aggregate,
        average=average,
        maximum=maximum,
        per_target=per_target,
        undefined=undefined,
    )


__all__ = ["ErrorReport", "direct_matvec", "relative_errors"]
