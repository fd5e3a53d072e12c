"""jaxfly: butterfly evaluation of oscillatory kernel sums in JAX."""

from ._typecheck import enable_runtime_typecheck

enable_runtime_typecheck()

from .config import (
    ButterflyAdvancedConfig,
    ButterflyPreset,
    CompressionConfig,
    TreeConfig,
)
from .errors import (
    BindingStateError,
    ButterflyError,
    ConfigurationError,
    DegenerateNormError,
)
from .kernels import FourierKernel, KernelAdapter, OscillatoryKernel, ScaledFourierKernel
from .operators.compression import ChebyshevCompression
from .runtime.reference import ErrorReport, direct_matvec, relative_errors
from .runtime.scheduler import butterfly_sweep
from .solver import ButterflyResult, ButterflyTransform
from .tree import NDTree, build_tree

__all__ = [
    "BindingStateError",
    "ButterflyAdvancedConfig",
    "ButterflyError",
    "ButterflyPreset",
    "ButterflyResult",
    "ButterflyTransform",
    "ChebyshevCompression",
    "CompressionConfig",
    "ConfigurationError",
    "DegenerateNormError",
    "ErrorReport",
    "FourierKernel",
    "KernelAdapter",
    "NDTree",
    "OscillatoryKernel",
    "ScaledFourierKernel",
    "TreeConfig",
    "build_tree",
    "butterfly_sweep",
    "direct_matvec",
    "relative_errors",
]
