"""
Pytest configuration for the Kiln test suite.
"""

import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add backend to Python path for test imports
backend_path = Path(__file__).parent.parent
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))

from kiln.catalog.classifier import FileKind  # noqa: E402
from kiln.compilers.base import CompileOptions, Compiler  # noqa: E402
from kiln.compilers.errors import CompileCancelledError, CompileError  # noqa: E402
from kiln.persistence.store import ProjectStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that wait on real filesystem events"
    )


class FakeCompiler(Compiler):
    """
    In-process compiler for tests.

    Output is a marker line followed by the source bytes. Tracks every call
    and the highest number of simultaneous compiles seen per target.
    """

    def __init__(self, delay: float = 0.0, failures: Optional[Dict[str, CompileError]] = None):
        self.delay = delay
        self.failures: Dict[str, CompileError] = dict(failures or {})
        self.calls: List[str] = []
        self.cancelled: List[str] = []
        self.max_overlap: Dict[str, int] = {}
        self.started = threading.Event()
        self._active: Dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "fake"

    def compile(self, source_path: str, output_path: str, kind: FileKind, options: CompileOptions) -> bytes:
        with self._lock:
            self.calls.append(source_path)
            self._active[output_path] = self._active.get(output_path, 0) + 1
            self.max_overlap[output_path] = max(
                self.max_overlap.get(output_path, 0), self._active[output_path]
            )
        self.started.set()
        try:
            deadline = time.monotonic() + self.delay
            while time.monotonic() < deadline:
                if options.cancelled:
                    raise CompileCancelledError(f"Cancelled: {source_path}")
                time.sleep(0.005)
            if source_path in self.failures:
                raise self.failures[source_path]
            with open(source_path, "rb") as f:
                return b"/* fake */\n" + f.read()
        finally:
            with self._lock:
                self._active[output_path] -= 1

    def cancel(self, output_path: str) -> None:
        with self._lock:
            self.cancelled.append(output_path)

    def call_count(self, source_path: str) -> int:
        with self._lock:
            return self.calls.count(source_path)


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    """A loaded, empty store under a temp data dir."""
    s = ProjectStore(str(tmp_path / "data" / "projects.json"))
    s.load()
    return s


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """
    A small project tree:

        site/
          a.less
          styles/_vars.scss
          styles/main.scss   (imports vars)
          js/app.coffee
          README.md
          node_modules/lib/x.less
    """
    root = tmp_path / "site"
    (root / "styles").mkdir(parents=True)
    (root / "js").mkdir()
    (root / "node_modules" / "lib").mkdir(parents=True)

    (root / "a.less").write_text("@color: #333;\nbody { color: @color; }\n")
    (root / "styles" / "_vars.scss").write_text("$main: red;\n")
    (root / "styles" / "main.scss").write_text("@import 'vars';\nbody { color: $main; }\n")
    (root / "js" / "app.coffee").write_text("square = (x) -> x * x\n")
    (root / "README.md").write_text("# site\n")
    (root / "node_modules" / "lib" / "x.less").write_text("a { b: c; }\n")
    return root
