"""Operator namespace for interpolation grids and compression policies."""

from . import chebyshev

__all__ = ["chebyshev"]
