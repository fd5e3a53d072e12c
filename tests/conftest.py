import jax

# Accuracy assertions below are calibrated for double precision.
jax.config.update("jax_enable_x64", True)
