"""
Filesystem traversal for project roots.

Recursively lists files under a directory, skipping OS housekeeping
entries and anything the caller excludes. Holds no state.
"""

import logging
import os
import re
from typing import Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# exclude(path, name) -> True to skip the entry
ExcludePredicate = Callable[[str, str], bool]

# macOS resource forks and Finder metadata, Windows thumbnail caches
_OS_FILE_PATTERNS = (
    re.compile(r"^\.(_|DS_Store$)"),
    re.compile(r"^thumbs\.db$", re.IGNORECASE),
)

# macOS volume housekeeping directories
_OS_DIR_PATTERN = re.compile(r"^\.(fseventsd|Spotlight-V100|TemporaryItems|Trashes)$")


def is_os_file(name: str) -> bool:
    """Return True if a file name belongs to the OS rather than the user."""
    return any(pattern.match(name) for pattern in _OS_FILE_PATTERNS)


def is_os_dir(name: str) -> bool:
    """Return True if a directory name belongs to the OS rather than the user."""
    return bool(_OS_DIR_PATTERN.match(name))


def list_files(root: str, exclude: Optional[ExcludePredicate] = None) -> List[str]:
    """
    List all files under a directory.

    Args:
        root: Directory to walk
        exclude: Optional predicate called as exclude(path, name) for every
                 file and directory entry; True skips the entry (and, for a
                 directory, everything below it)

    Returns:
        Sorted list of absolute file paths. Empty if root does not exist.

    A subdirectory that cannot be read, or that loops back through a
    symlink to a directory already visited, is skipped on its own; the
    rest of the walk continues.
    """
    root = os.path.abspath(root)
    if not os.path.isdir(root):
        return []

    files: List[str] = []
    visited: Set[Tuple[int, int]] = set()
    _walk(root, exclude, files, visited)
    return sorted(files)


def _walk(
    directory: str,
    exclude: Optional[ExcludePredicate],
    files: List[str],
    visited: Set[Tuple[int, int]],
) -> None:
    try:
        st = os.stat(directory)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return

    key = (st.st_dev, st.st_ino)
    if key in visited:
        logger.debug(f"Skipping symlink cycle at {directory}")
        return
    visited.add(key)

    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return

    for entry in entries:
        try:
            is_dir = entry.is_dir()
        except OSError:
            continue

        if is_dir:
            if is_os_dir(entry.name):
                continue
            if exclude and exclude(entry.path, entry.name):
                continue
            _walk(entry.path, exclude, files, visited)
        else:
            if is_os_file(entry.name):
                continue
            if exclude and exclude(entry.path, entry.name):
                continue
            files.append(entry.path)
