"""
Compilers backed by external command-line tools.

Each invocation runs the tool with subprocess.Popen, treats stdout as the
compiled artifact and stderr as diagnostics. Running processes are
tracked per output target so they can be cancelled (SIGTERM, escalating
to SIGKILL).
"""

import logging
import re
import subprocess
import threading
import time
from typing import Dict, List, Optional, Set, Tuple

from ..catalog.classifier import FileKind
from .base import CompileOptions, Compiler
from .errors import CompileCancelledError, CompileError, CompileTimeoutError

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while a tool runs
_POLL_INTERVAL = 0.1
# Seconds to wait after SIGTERM before SIGKILL
_TERMINATE_GRACE = 5.0

# "line 3, column 7" (lessc, coffee), "file:3:7" (sass, coffee)
_LINE_COLUMN_PATTERNS = (
    re.compile(r"line (\d+)(?:,? column (\d+))?", re.IGNORECASE),
    re.compile(r":(\d+):(\d+)"),
)


def parse_location(message: str) -> Tuple[Optional[int], Optional[int]]:
    """Extract (line, column) from a compiler message, if present."""
    for pattern in _LINE_COLUMN_PATTERNS:
        match = pattern.search(message)
        if match:
            line = int(match.group(1))
            column = int(match.group(2)) if match.group(2) else None
            return line, column
    return None, None


class SubprocessCompiler(Compiler):
    """
    Runs a command-line compiler.

    Args:
        name: Tool name for logs
        executable: Program to run (looked up on PATH)
        args: Arguments placed before the source path
    """

    def __init__(self, name: str, executable: str, args: Optional[List[str]] = None):
        self._name = name
        self.executable = executable
        self.args = list(args or [])
        self._active_processes: Dict[str, subprocess.Popen] = {}
        self._cancelled: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def build_command(self, source_path: str, options: CompileOptions) -> List[str]:
        return [self.executable, *self.args, *options.extra_args, source_path]

    def compile(
        self,
        source_path: str,
        output_path: str,
        kind: FileKind,
        options: CompileOptions,
    ) -> bytes:
        cmd = self.build_command(source_path, options)
        logger.debug(f"[{self.name}] Running: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise CompileError(f"Compiler executable not found: {self.executable}") from e
        except OSError as e:
            raise CompileError(f"Failed to start {self.executable}: {e}") from e

        with self._lock:
            self._active_processes[output_path] = process

        try:
            stdout, stderr = self._communicate(process, options)
        finally:
            with self._lock:
                if self._active_processes.get(output_path) is process:
                    del self._active_processes[output_path]
                cancelled = process in self._cancelled
                self._cancelled.discard(process)

        if cancelled:
            raise CompileCancelledError("Compilation cancelled")

        if process.returncode != 0:
            message = (stderr or stdout).decode("utf-8", errors="replace").strip()
            if not message:
                message = f"{self.executable} exited with code {process.returncode}"
            line, column = parse_location(message)
            raise CompileError(message, line=line, column=column)

        return stdout

    def _communicate(self, process: subprocess.Popen, options: CompileOptions) -> Tuple[bytes, bytes]:
        deadline = time.monotonic() + options.timeout_seconds
        while True:
            if options.cancelled:
                self._terminate(process)
                raise CompileCancelledError("Compilation cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._terminate(process)
                raise CompileTimeoutError(
                    f"{self.executable} timed out after {options.timeout_seconds:g}s"
                )

            try:
                return process.communicate(timeout=min(_POLL_INTERVAL, remaining))
            except subprocess.TimeoutExpired:
                continue

    def _terminate(self, process: subprocess.Popen, reap: bool = True) -> None:
        if process.poll() is not None:
            return
        logger.info(f"[{self.name}] Sending SIGTERM to PID {process.pid}")
        try:
            process.terminate()
            try:
                process.wait(timeout=_TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                logger.warning(f"[{self.name}] PID {process.pid} did not terminate, sending SIGKILL")
                process.kill()
                process.wait()
        except ProcessLookupError:
            pass
        if not reap:
            return
        # Reap the process and close its pipes
        try:
            process.communicate(timeout=_TERMINATE_GRACE)
        except (subprocess.TimeoutExpired, ValueError):
            pass

    def cancel(self, output_path: str) -> None:
        """Terminate the tool running for a target. The compile raises CompileCancelledError."""
        with self._lock:
            process = self._active_processes.get(output_path)
            if process is not None:
                self._cancelled.add(process)
        if process is not None:
            # The compiling thread owns the pipes
            self._terminate(process, reap=False)


def less_compiler(executable: str = "lessc") -> SubprocessCompiler:
    return SubprocessCompiler("less", executable, ["--no-color"])


def sass_compiler(executable: str = "sass") -> SubprocessCompiler:
    # Dart Sass picks indented vs SCSS syntax from the file extension
    return SubprocessCompiler("sass", executable, ["--no-source-map"])


def coffee_compiler(executable: str = "coffee") -> SubprocessCompiler:
    return SubprocessCompiler("coffee", executable, ["--print", "--compile"])
