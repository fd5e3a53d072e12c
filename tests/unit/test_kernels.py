"""Tests for the kernel adapters."""

from dataclasses import dataclass

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jaxfly.errors import ConfigurationError
from jaxfly.kernels import (
    FourierKernel,
    KernelAdapter,
    OscillatoryKernel,
    ScaledFourierKernel,
    check_kernel,
    describe_kernel,
    pairwise,
    phase_factors,
)


def _pairs(dim: int):
    key_t, key_s = jax.random.split(jax.random.PRNGKey(7))
    return (
        jax.random.uniform(key_t, (30, dim)),
        jax.random.uniform(key_s, (40, dim)),
    )


@pytest.mark.parametrize(
    "kernel",
    [FourierKernel(), FourierKernel(frequency=37.5), ScaledFourierKernel(12.0, 3.0)],
)
@pytest.mark.parametrize("dim", [1, 3])
def test_value_matches_amplitude_phase_factorization(kernel, dim):
    targets, sources = _pairs(dim)

    values = pairwise(kernel.value, targets, sources)
    amplitude = pairwise(kernel.amplitude, targets, sources)
    phase = pairwise(kernel.phase, targets, sources)

    assert values.shape == (30, 40)
    np.testing.assert_allclose(
        values, amplitude * jnp.exp(2j * jnp.pi * phase), rtol=1e-12, atol=1e-12
    )


def test_fourier_kernel_phase_is_scaled_dot_product():
    kernel = FourierKernel(frequency=4.0)
    t = jnp.array([0.5, 0.25])
    s = jnp.array([1.0, 2.0])

    np.testing.assert_allclose(kernel.phase(t, s), 4.0)
    np.testing.assert_allclose(kernel.value(t, s), 1.0 + 0.0j, atol=1e-12)


def test_phase_factors_have_unit_modulus():
    targets, sources = _pairs(2)
    factors = phase_factors(ScaledFourierKernel(5.0, 1.0), targets, sources, -1.0)

    np.testing.assert_allclose(jnp.abs(factors), 1.0, rtol=1e-12)


def test_shipped_kernels_satisfy_protocol():
    assert isinstance(FourierKernel(), KernelAdapter)
    assert check_kernel(ScaledFourierKernel()) == ScaledFourierKernel()


def test_check_kernel_rejects_missing_capabilities():
    class PhaseOnly:
        def phase(self, target, source):
            return jnp.dot(target, source)

    with pytest.raises(ConfigurationError, match="value, amplitude"):
        check_kernel(PhaseOnly())


def test_check_kernel_rejects_unhashable_kernels():
    @dataclass
    class Mutable(OscillatoryKernel):
        frequency: float = 1.0

        def phase(self, target, source):
            return self.frequency * jnp.dot(target, source)

        def amplitude(self, target, source):
            return jnp.ones(())

    with pytest.raises(ConfigurationError, match="hashable"):
        check_kernel(Mutable())


def test_describe_kernel_lists_parameters():
    text = describe_kernel(FourierKernel(frequency=2.0))

    assert text.startswith("FourierKernel(frequency=2.0)")
    assert "cycles" in text
