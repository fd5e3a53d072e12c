import logging

import click
import jax
import jax.numpy as jnp

from jaxfly.config import ButterflyPreset
from jaxfly.kernels import FourierKernel, describe_kernel
from jaxfly.solver import ButterflyTransform


def random_problem(
    num_sources: int,
    num_targets: int,
    dim: int,
    seed: int,
) -> tuple[jax.Array, jax.Array, jax.Array]:
    """Uniform points in ``[0, 1)^dim`` and charges in ``[0, 1) + i [0, 1)``."""
    key_s, key_t, key_re, key_im = jax.random.split(jax.random.PRNGKey(seed), 4)
    sources = jax.random.uniform(key_s, (num_sources, dim))
    targets = jax.random.uniform(key_t, (num_targets, dim))
    charges = jax.random.uniform(key_re, (num_sources,)) + 1j * jax.random.uniform(
        key_im, (num_sources,)
    )
    return sources, jnp.asarray(charges), targets


@click.command(
    context_settings=dict(ignore_unknown_options=True, allow_extra_args=True)
)
@click.option("-N", "num_sources", type=int, default=1000, show_default=True, help="Number of source points.")
@click.option("-M", "num_targets", type=int, default=1000, show_default=True, help="Number of target points.")
@click.option(
    "-nocheck",
    "--nocheck",
    "nocheck",
    is_flag=True,
    default=False,
    help="Skip the direct matvec and the error report.",
)
@click.option("--dim", type=int, default=1, show_default=True, help="Point dimension.")
@click.option("--frequency", type=float, default=1.0, show_default=True, help="Fourier kernel frequency.")
@click.option(
    "--preset",
    type=click.Choice([p.value for p in ButterflyPreset]),
    default=ButterflyPreset.BALANCED.value,
    show_default=True,
)
@click.option("--seed", type=int, default=0, show_default=True)
@click.option("--verbose", is_flag=True, default=False, help="Log per-level traces.")
def main(
    num_sources: int,
    num_targets: int,
    nocheck: bool,
    dim: int,
    frequency: float,
    preset: str,
    seed: int,
    verbose: bool,
) -> None:
    """Run a random butterfly problem and report its accuracy."""
    jax.config.update("jax_enable_x64", True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    kernel = FourierKernel(frequency=frequency)
    click.echo(describe_kernel(kernel))

    sources, charges, targets = random_problem(num_sources, num_targets, dim, seed)
    transform = ButterflyTransform(kernel, preset=preset)
    result = transform.evaluate(sources, charges, targets, check=not nocheck)
    if nocheck:
        result.values.block_until_ready()
        return

    click.echo("Computing direct matvec...")
    for computed, exact in zip(result.values.tolist(), result.exact.tolist()):
        click.echo(f"{computed}\t{exact}")
    errors = result.errors
    click.echo(f"Vector  relative error: {errors.aggregate}")
    click.echo(f"Average relative error: {errors.average}")
    click.echo(f"Maximum relative error: {errors.maximum}")
    if errors.undefined_count:
        click.echo(f"Undefined relative errors: {errors.undefined_count}")
