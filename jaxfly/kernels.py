"""Oscillatory kernels expressed as amplitude x phase factorizations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

import jax
import jax.numpy as jnp
from jaxtyping import Array

from .errors import ConfigurationError

TWO_PI = 2.0 * jnp.pi


@runtime_checkable
class KernelAdapter(Protocol):
    """Capabilities the butterfly needs from a kernel.

    All three methods act on a single ``(target, source)`` pair of coordinate
    vectors and must be traceable by JAX. The factorization

        value(t, s) == amplitude(t, s) * exp(2 pi i phase(t, s))

    must hold for every pair; ``phase`` is measured in cycles.
    """

    def value(self: "KernelAdapter", target: Array, source: Array) -> Array: ...

    def phase(self: "KernelAdapter", target: Array, source: Array) -> Array: ...

    def amplitude(self: "KernelAdapter", target: Array, source: Array) -> Array: ...


class OscillatoryKernel:
    """Base class deriving ``value`` from ``amplitude`` and ``phase``."""

    def value(self: "OscillatoryKernel", target: Array, source: Array) -> Array:
        angle = TWO_PI * self.phase(target, source)
        return self.amplitude(target, source) * (
            jnp.cos(angle) + 1j * jnp.sin(angle)
        )

    def phase(self: "OscillatoryKernel", target: Array, source: Array) -> Array:
        raise NotImplementedError

    def amplitude(self: "OscillatoryKernel", target: Array, source: Array) -> Array:
        raise NotImplementedError


@dataclass(frozen=True)
class FourierKernel(OscillatoryKernel):
    """Non-uniform Fourier kernel ``exp(2 pi i frequency <t, s>)``."""

    frequency: float = 1.0

    def phase(self: "FourierKernel", target: Array, source: Array) -> Array:
        return self.frequency * jnp.dot(target, source)

    def amplitude(self: "FourierKernel", target: Array, source: Array) -> Array:
        return jnp.ones((), dtype=jnp.result_type(target, source))


@dataclass(frozen=True)
class ScaledFourierKernel(OscillatoryKernel):
    """Fourier kernel with a smooth, non-constant amplitude.

    ``amplitude = 1 / (1 + decay |t|^2 |s|^2)``.
    """

    frequency: float = 1.0
    decay: float = 1.0

    def phase(self: "ScaledFourierKernel", target: Array, source: Array) -> Array:
        return self.frequency * jnp.dot(target, source)

    def amplitude(self: "ScaledFourierKernel", target: Array, source: Array) -> Array:
        scale = jnp.dot(target, target) * jnp.dot(source, source)
        return 1.0 / (1.0 + self.decay * scale)


def check_kernel(kernel: Any) -> KernelAdapter:
    """Validate the kernel capabilities once, before any traversal."""

    missing = [
        name
        for name in ("value", "phase", "amplitude")
        if not callable(getattr(kernel, name, None))
    ]
    if missing:
        raise ConfigurationError(
            f"kernel {type(kernel).__name__} is missing: {', '.join(missing)}"
        )
    try:
        hash(kernel)
    except TypeError as exc:
        # Kernels are static arguments of the jitted transfer operators.
        raise ConfigurationError(
            f"kernel {type(kernel).__name__} must be hashable (use a frozen dataclass)"
        ) from exc
    return kernel


def pairwise(
    fn: Callable[[Array, Array], Array],
    targets: Array,
    sources: Array,
) -> Array:
    """Evaluate ``fn(t, s)`` for all ``(m, d)`` targets and ``(n, d)`` sources."""

    return jax.vmap(jax.vmap(fn, in_axes=(None, 0)), in_axes=(0, None))(
        targets, sources
    )


def phase_factors(
    kernel: KernelAdapter,
    targets: Array,
    sources: Array,
    sign: float = 1.0,
) -> Array:
    """Unit-modulus factors ``exp(sign * 2 pi i phase(t, s))`` of shape ``(m, n)``."""

    return jnp.exp(sign * 1j * TWO_PI * pairwise(kernel.phase, targets, sources))


def describe_kernel(kernel: KernelAdapter) -> str:
    """Short human-readable trait summary, as printed by the CLI."""

    name = type(kernel).__name__
    fields = getattr(kernel, "__dataclass_fields__", {})
    params = ", ".join(f"{key}={getattr(kernel, key)!r}" for key in fields)
    return (
        f"{name}({params})\n"
        "  value:     amplitude(t, s) * exp(2 pi i phase(t, s))\n"
        "  phase:     cycles\n"
        "  charges:   complex\n"
        "  results:   complex"
    )


__all__ = [
    "FourierKernel",
    "KernelAdapter",
    "OscillatoryKernel",
    "ScaledFourierKernel",
    "check_kernel",
    "describe_kernel",
    "pairwise",
    "phase_factors",
]
