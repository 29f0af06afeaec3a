"""
Compiler registry.

Maps source extensions to compilers. The registry is itself a Compiler:
compile() dispatches on the source path's extension, so the build
coordinator only ever holds one Compiler.
"""

import logging
import os
import threading
from typing import Dict, List, Optional

from ..catalog.classifier import SOURCE_TYPES, FileKind
from ..config import KilnSettings
from .base import CompileOptions, Compiler
from .errors import CompileError
from .subprocess_compiler import coffee_compiler, less_compiler, sass_compiler

logger = logging.getLogger(__name__)


class CompilerRegistry(Compiler):
    """Extension → Compiler dispatch table."""

    def __init__(self) -> None:
        self._compilers: Dict[str, Compiler] = {}
        # output_path -> compiler currently working on it
        self._in_flight: Dict[str, Compiler] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "registry"

    def register(self, extension: str, compiler: Compiler) -> None:
        """
        Register a compiler for a source extension (".less", ".scss", ...).

        Raises:
            ValueError: If the extension is not a recognized source type
        """
        ext = extension.lower()
        if ext not in SOURCE_TYPES:
            raise ValueError(f"Not a source extension: {extension}")
        self._compilers[ext] = compiler

    def get(self, source_path: str) -> Optional[Compiler]:
        return self._compilers.get(os.path.splitext(source_path)[1].lower())

    def extensions(self) -> List[str]:
        return sorted(self._compilers)

    def compile(
        self,
        source_path: str,
        output_path: str,
        kind: FileKind,
        options: CompileOptions,
    ) -> bytes:
        compiler = self.get(source_path)
        if compiler is None:
            raise CompileError(f"No compiler registered for {os.path.basename(source_path)}")

        with self._lock:
            self._in_flight[output_path] = compiler
        try:
            return compiler.compile(source_path, output_path, kind, options)
        finally:
            with self._lock:
                if self._in_flight.get(output_path) is compiler:
                    del self._in_flight[output_path]

    def cancel(self, output_path: str) -> None:
        with self._lock:
            compiler = self._in_flight.get(output_path)
        if compiler is not None:
            compiler.cancel(output_path)


def default_registry(settings: KilnSettings) -> CompilerRegistry:
    """Registry of the command-line compilers named in settings."""
    executables = settings.compiler_executables
    registry = CompilerRegistry()

    less = less_compiler(executables.get("less", "lessc"))
    sass = sass_compiler(executables.get("sass", "sass"))
    coffee = coffee_compiler(executables.get("coffee", "coffee"))

    registry.register(".less", less)
    registry.register(".sass", sass)
    registry.register(".scss", sass)
    registry.register(".coffee", coffee)

    logger.debug(f"Compiler registry: {registry.extensions()}")
    return registry
