"""
Stylesheet import graph.

Finds the files a LESS / Sass / SCSS source pulls in through @import so
that a change to a shared partial rebuilds every stylesheet depending on
it. Only @import statements are read. They resolve relative to the
importing file, with an implicit extension and the Sass underscore
partial prefix.
"""

import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Set

from ..catalog.classifier import FileKind
from ..projects.models import FileRecord

logger = logging.getLogger(__name__)

_IMPORT_RE = re.compile(r"@import\s+(?:\([^)]*\)\s*)?([^;\n]+)")
_QUOTED_RE = re.compile(r"""["']([^"']+)["']""")
_LINE_COMMENT_RE = re.compile(r"^\s*//.*$", re.MULTILINE)
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)

# Extensions tried, in order, for an import written without one
_IMPLICIT_EXTENSIONS = {
    ".less": (".less",),
    ".scss": (".scss", ".sass"),
    ".sass": (".sass", ".scss"),
}


def _import_targets(text: str) -> List[str]:
    text = _BLOCK_COMMENT_RE.sub("", text)
    text = _LINE_COMMENT_RE.sub("", text)

    targets: List[str] = []
    for match in _IMPORT_RE.finditer(text):
        clause = match.group(1).strip()
        quoted = _QUOTED_RE.findall(clause)
        if quoted:
            targets.extend(quoted)
        else:
            # Indented Sass allows bare, comma separated names
            targets.extend(t.strip() for t in clause.split(",") if t.strip())
    return [t for t in targets if not _is_external(t)]


def _is_external(target: str) -> bool:
    lowered = target.lower()
    return (
        lowered.startswith(("url(", "http://", "https://", "//"))
        or lowered.endswith(".css")
    )


def _resolve(importer: str, target: str) -> Optional[str]:
    base_dir = os.path.dirname(importer)
    importer_ext = os.path.splitext(importer)[1].lower()
    candidate = os.path.normpath(os.path.join(base_dir, target))
    directory, name = os.path.split(candidate)

    names = [name]
    if not name.startswith("_"):
        names.append("_" + name)

    has_ext = os.path.splitext(name)[1].lower() in _IMPLICIT_EXTENSIONS
    for n in names:
        if has_ext:
            options = [n]
        else:
            options = [n + ext for ext in _IMPLICIT_EXTENSIONS.get(importer_ext, ())]
        for option in options:
            path = os.path.join(directory, option)
            if os.path.isfile(path):
                return path
    return None


def find_imports(source_path: str) -> List[str]:
    """
    Direct imports of a stylesheet, as absolute paths of existing files.

    Unreadable sources and unresolvable imports are skipped.
    """
    if os.path.splitext(source_path)[1].lower() not in _IMPLICIT_EXTENSIONS:
        return []
    try:
        with open(source_path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    except OSError as e:
        logger.debug(f"Cannot read {source_path} for imports: {e}")
        return []

    resolved: List[str] = []
    for target in _import_targets(text):
        path = _resolve(source_path, target)
        if path is not None and path not in resolved:
            resolved.append(path)
    return resolved


def dependents_of(changed_path: str, records: Iterable[FileRecord]) -> List[FileRecord]:
    """
    Stylesheet records whose import graph reaches changed_path.

    The changed file's own record is not included.
    """
    changed_path = os.path.abspath(changed_path)
    cache: Dict[str, List[str]] = {}

    def reaches(start: str) -> bool:
        seen: Set[str] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            if current not in cache:
                cache[current] = find_imports(current)
            for dep in cache[current]:
                if dep == changed_path:
                    return True
                stack.append(dep)
        return False

    return [
        r
        for r in records
        if r.kind == FileKind.STYLESHEET and r.source_path != changed_path and reaches(r.source_path)
    ]
