"""
Source file classification.

Maps a file extension to the compiler family that handles it and to the
extension of the artifact that family produces. Files with any other
extension are not sources and never become FileRecords.
"""

import os
from enum import Enum
from typing import Dict, NamedTuple, Optional


class FileKind(str, Enum):
    """Compiler family of a source file."""

    STYLESHEET = "stylesheet"  # Produces CSS
    SCRIPT = "script"  # Produces JS


class SourceType(NamedTuple):
    kind: FileKind
    output_extension: str


SOURCE_TYPES: Dict[str, SourceType] = {
    ".less": SourceType(FileKind.STYLESHEET, ".css"),
    ".sass": SourceType(FileKind.STYLESHEET, ".css"),
    ".scss": SourceType(FileKind.STYLESHEET, ".css"),
    ".coffee": SourceType(FileKind.SCRIPT, ".js"),
}

OUTPUT_EXTENSIONS: Dict[FileKind, str] = {
    FileKind.STYLESHEET: ".css",
    FileKind.SCRIPT: ".js",
}


def source_type(path: str) -> Optional[SourceType]:
    """Look up the source type for a path, or None if it is not a source."""
    ext = os.path.splitext(path)[1].lower()
    return SOURCE_TYPES.get(ext)


def classify(path: str) -> Optional[FileKind]:
    """
    Classify a path by extension.

    Returns:
        FileKind for recognized sources, None otherwise
    """
    st = source_type(path)
    return st.kind if st else None


def is_source_file(path: str) -> bool:
    return source_type(path) is not None


def required_output_extension(kind: FileKind) -> str:
    """Extension an output path must carry for a given kind."""
    return OUTPUT_EXTENSIONS[FileKind(kind)]


def default_output_path(source_path: str) -> str:
    """
    Default output path: same directory, extension swapped.

    Raises:
        ValueError: If source_path is not a recognized source file
    """
    st = source_type(source_path)
    if st is None:
        raise ValueError(f"Not a source file: {source_path}")
    base, _ = os.path.splitext(source_path)
    return base + st.output_extension


def output_extension_matches(output_path: str, kind: FileKind) -> bool:
    """Case-insensitive check of an output path's extension against a kind."""
    ext = os.path.splitext(output_path)[1].lower()
    return ext == required_output_extension(kind)


def normalize_output_path(output_path: str) -> str:
    """Collapse '.', '..' and repeated separators in an explicit output path."""
    return os.path.normpath(output_path) if output_path else ""


def resolve_output_path(source_path: str, output_path: str = "") -> str:
    """Build target of a source: the explicit override if set, the default otherwise."""
    return normalize_output_path(output_path) or default_output_path(source_path)


def target_key(output_path: str) -> str:
    """
    Identity of a build target.

    Paths spelled differently (``/p/./a.css``, ``/p/A.css`` on a
    case-insensitive platform) but naming the same artifact share a key.
    """
    return os.path.normcase(os.path.normpath(output_path))
