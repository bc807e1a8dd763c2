"""
Problem handling for the cloud check.

This package provides the handler interface, the resolution catalog
declaration and the problem registry.
"""

from problems.base import (
    ProblemContext,
    ProblemHandler,
    Resolution,
    ResolutionOption,
    handler_error,
    resolution,
)
from problems.registry import ProblemRegistry, build_default_registry

__all__ = [
    "ProblemContext",
    "ProblemHandler",
    "Resolution",
    "ResolutionOption",
    "handler_error",
    "resolution",
    "ProblemRegistry",
    "build_default_registry",
]
