"""
Tests for the compiler capability: subprocess tools and extension dispatch.

The subprocess tests drive the current Python interpreter as a stand-in
command-line compiler so they run without lessc / sass / coffee installed.
"""

import sys
import threading
import time
from pathlib import Path

import pytest

from kiln.catalog.classifier import FileKind
from kiln.compilers import (
    CompileCancelledError,
    CompileError,
    CompileOptions,
    CompileTimeoutError,
    CompilerRegistry,
    SubprocessCompiler,
    coffee_compiler,
    default_registry,
    less_compiler,
    parse_location,
    sass_compiler,
)
from kiln.config import KilnSettings

from conftest import FakeCompiler

ECHO = "import sys; sys.stdout.write(open(sys.argv[1]).read().upper())"
FAIL = (
    "import sys; sys.stderr.write('ParseError: Unrecognised input in '"
    " + sys.argv[1] + ' on line 3, column 7'); sys.exit(1)"
)
SLEEP = "import time; time.sleep(30)"


def _python_compiler(script: str) -> SubprocessCompiler:
    return SubprocessCompiler("python", sys.executable, ["-c", script])


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "a.less"
    path.write_text("body { color: red; }")
    return path


class TestParseLocation:

    @pytest.mark.parametrize("message,expected", [
        ("ParseError: Unrecognised input in a.less on line 3, column 7:", (3, 7)),
        ("error: missing } on line 12", (12, None)),
        ("a.scss:4:9: expected \";\"", (4, 9)),
        ("something went wrong", (None, None)),
    ])
    def test_locations(self, message, expected):
        assert parse_location(message) == expected


class TestSubprocessCompiler:

    def test_stdout_is_the_artifact(self, source: Path):
        compiler = _python_compiler(ECHO)

        output = compiler.compile(str(source), str(source.with_suffix(".css")), FileKind.STYLESHEET, CompileOptions())

        assert output == b"BODY { COLOR: RED; }"

    def test_nonzero_exit_raises_with_location(self, source: Path):
        compiler = _python_compiler(FAIL)

        with pytest.raises(CompileError) as exc_info:
            compiler.compile(str(source), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions())

        error = exc_info.value
        assert "Unrecognised input" in error.message
        assert (error.line, error.column) == (3, 7)
        assert error.location() == "line 3, column 7"

    def test_missing_executable(self, source: Path):
        compiler = SubprocessCompiler("less", "kiln-no-such-lessc")

        with pytest.raises(CompileError) as exc_info:
            compiler.compile(str(source), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions())

        assert "not found" in exc_info.value.message

    def test_timeout_terminates_process(self, source: Path):
        compiler = _python_compiler(SLEEP)
        started = time.monotonic()

        with pytest.raises(CompileTimeoutError):
            compiler.compile(str(source), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions(timeout_seconds=0.5))

        assert time.monotonic() - started < 10.0

    def test_cancel_event_stops_compile(self, source: Path):
        compiler = _python_compiler(SLEEP)
        cancel = threading.Event()
        threading.Timer(0.3, cancel.set).start()

        with pytest.raises(CompileCancelledError):
            compiler.compile(
                str(source), "/tmp/a.css", FileKind.STYLESHEET,
                CompileOptions(timeout_seconds=30, cancel_event=cancel),
            )

    def test_cancel_by_target_terminates_process(self, source: Path):
        """
        GIVEN a long-running compile for a target
        WHEN cancel(target) is called from another thread
        THEN the tool is terminated and the compile fails promptly
        """
        compiler = _python_compiler(SLEEP)
        target = "/tmp/kiln-cancel-target.css"

        def cancel_soon():
            deadline = time.monotonic() + 5.0
            while time.monotonic() < deadline:
                if target in compiler._active_processes:
                    compiler.cancel(target)
                    return
                time.sleep(0.02)

        threading.Thread(target=cancel_soon, daemon=True).start()
        started = time.monotonic()

        with pytest.raises(CompileCancelledError):
            compiler.compile(str(source), target, FileKind.STYLESHEET, CompileOptions(timeout_seconds=30))

        assert time.monotonic() - started < 10.0
        assert target not in compiler._active_processes

    def test_factory_commands(self):
        options = CompileOptions(extra_args=["--flag"])
        assert less_compiler().build_command("/p/a.less", options) == ["lessc", "--no-color", "--flag", "/p/a.less"]
        assert sass_compiler("dart-sass").build_command("/p/a.scss", CompileOptions())[:2] == ["dart-sass", "--no-source-map"]
        assert coffee_compiler().build_command("/p/a.coffee", CompileOptions()) == [
            "coffee", "--print", "--compile", "/p/a.coffee",
        ]


class TestCompilerRegistry:

    def test_dispatch_by_extension(self, source: Path):
        less = FakeCompiler()
        registry = CompilerRegistry()
        registry.register(".LESS", less)

        output = registry.compile(str(source), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions())

        assert output.startswith(b"/* fake */")
        assert less.calls == [str(source)]

    def test_unregistered_extension_is_compile_error(self, tmp_path: Path):
        registry = CompilerRegistry()
        with pytest.raises(CompileError):
            registry.compile(str(tmp_path / "a.scss"), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions())

    def test_register_rejects_non_source_extension(self):
        with pytest.raises(ValueError):
            CompilerRegistry().register(".txt", FakeCompiler())

    def test_cancel_reaches_in_flight_compiler(self, source: Path):
        slow = FakeCompiler(delay=0.5)
        registry = CompilerRegistry()
        registry.register(".less", slow)
        thread = threading.Thread(
            target=registry.compile,
            args=(str(source), "/tmp/a.css", FileKind.STYLESHEET, CompileOptions()),
        )
        thread.start()
        assert slow.started.wait(5.0)

        registry.cancel("/tmp/a.css")
        thread.join()

        assert slow.cancelled == ["/tmp/a.css"]

    def test_default_registry_uses_configured_executables(self, tmp_path: Path):
        settings = KilnSettings(data_dir=str(tmp_path), compiler_executables={"less": "my-lessc"})

        registry = default_registry(settings)

        assert registry.extensions() == [".coffee", ".less", ".sass", ".scss"]
        assert registry.get("/p/a.less").executable == "my-lessc"
        assert registry.get("/p/a.scss") is registry.get("/p/a.sass")
