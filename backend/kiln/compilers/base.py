"""
Compiler capability interface.

A Compiler turns one source file into the bytes of one output artifact.
It does not write the artifact; the build coordinator does that once the
compile succeeds.

Rules:
- compile() is synchronous from the caller's point of view
- Failures raise CompileError (never return partial output)
- Invocations are time-boxed by CompileOptions.timeout_seconds
- An in-flight invocation can be stopped with cancel(output_path) or by
  setting CompileOptions.cancel_event
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from ..catalog.classifier import FileKind


@dataclass
class CompileOptions:
    """Per-invocation options."""

    timeout_seconds: float = 60.0
    cancel_event: Optional[threading.Event] = None
    extra_args: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class Compiler(ABC):
    """Abstract base class for compilers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable compiler name for logs."""
        pass

    @abstractmethod
    def compile(
        self,
        source_path: str,
        output_path: str,
        kind: FileKind,
        options: CompileOptions,
    ) -> bytes:
        """
        Compile a source file.

        Args:
            source_path: Absolute path of the source
            output_path: Resolved target path (for tools that embed it)
            kind: Source family
            options: Timeout, cancellation, extra arguments

        Returns:
            Compiled artifact bytes

        Raises:
            CompileError: Compilation failed, timed out, or was cancelled
        """
        pass

    def cancel(self, output_path: str) -> None:
        """Stop an in-flight compile for a target. Default: nothing to stop."""
        return None
