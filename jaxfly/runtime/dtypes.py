"""Centralized dtypes for box indices and coefficient buffers.

Keep a single source of truth for index dtype so the codebase can be
switched between 32-bit and 64-bit indices easily.
"""

import jax.numpy as jnp
import numpy as np
from jaxtyping import DTypeLike

# Host-side tree arrays are built with numpy and uploaded once per level.
INDEX_DTYPE = np.int64


def as_index(x: object) -> jnp.ndarray:
    """Convert a Python, numpy or JAX scalar/array to INDEX_DTYPE."""
    return jnp.asarray(x, dtype=INDEX_DTYPE)


def complex_dtype_for_real(real_dtype: DTypeLike) -> jnp.dtype:
    """Return complex dtype paired with a real floating dtype."""

    dtype = jnp.asarray(0, dtype=real_dtype).dtype
    if dtype == jnp.float64:
        return jnp.complex128
    return jnp.complex64


def result_dtype(*arrays: object) -> jnp.dtype:
    """Complex dtype wide enough for the given point/charge arrays."""

    real = jnp.result_type(*[jnp.real(jnp.asarray(a)) for a in arrays])
    return complex_dtype_for_real(real)


__all__ = ["INDEX_DTYPE", "as_index", "complex_dtype_for_real", "result_dtype"]
