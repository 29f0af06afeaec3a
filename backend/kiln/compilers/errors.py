"""
Compiler errors.

A CompileError concerns one source file only. The build coordinator
records it on the file and reports it; it never stops other builds.
"""

from typing import Optional


class CompileError(Exception):
    """
    Compilation of a single source failed.

    Attributes:
        message: Tool output describing the failure
        line: 1-based line of the error, if the tool reported one
        column: 1-based column of the error, if the tool reported one
    """

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(message)

    def location(self) -> str:
        if self.line is None:
            return ""
        if self.column is None:
            return f"line {self.line}"
        return f"line {self.line}, column {self.column}"


class CompileTimeoutError(CompileError):
    """Compiler did not finish within its time box."""

    pass


class CompileCancelledError(CompileError):
    """Compilation was cancelled by the caller."""

    pass
