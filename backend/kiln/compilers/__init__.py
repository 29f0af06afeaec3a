"""
Compiler capability.

Public API:
    Compiler — Abstract compiler interface
    CompileOptions — Per-invocation timeout / cancellation
    CompileError — Per-file compilation failure
    SubprocessCompiler — Command-line tool wrapper
    CompilerRegistry — Extension dispatch
"""

from .errors import CompileError, CompileTimeoutError, CompileCancelledError
from .base import Compiler, CompileOptions
from .subprocess_compiler import (
    SubprocessCompiler,
    parse_location,
    less_compiler,
    sass_compiler,
    coffee_compiler,
)
from .registry import CompilerRegistry, default_registry

__all__ = [
    # Errors
    "CompileError",
    "CompileTimeoutError",
    "CompileCancelledError",
    # Interface
    "Compiler",
    "CompileOptions",
    # Implementations
    "SubprocessCompiler",
    "parse_location",
    "less_compiler",
    "sass_compiler",
    "coffee_compiler",
    "CompilerRegistry",
    "default_registry",
]
