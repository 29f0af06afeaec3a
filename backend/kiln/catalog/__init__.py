"""
Source discovery — filesystem listing and file classification.

Public API:
    list_files — Recursive listing with OS-noise filtering
    classify — Extension → FileKind (or None)
    default_output_path — Source path → default artifact path
    resolve_output_path — Explicit override or default artifact path
    target_key — Spelling-independent identity of an artifact path
"""

from .scanner import list_files, is_os_file, is_os_dir
from .classifier import (
    FileKind,
    SOURCE_TYPES,
    classify,
    is_source_file,
    default_output_path,
    required_output_extension,
    output_extension_matches,
    normalize_output_path,
    resolve_output_path,
    target_key,
)

__all__ = [
    # Scanner
    "list_files",
    "is_os_file",
    "is_os_dir",
    # Classifier
    "FileKind",
    "SOURCE_TYPES",
    "classify",
    "is_source_file",
    "default_output_path",
    "required_output_extension",
    "output_extension_matches",
    "normalize_output_path",
    "resolve_output_path",
    "target_key",
]
