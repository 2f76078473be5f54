"""Helpers to discover practice exam definitions under a local folder.

The loader scans for JSON files recursively and returns a list of
`Path` objects suitable for feeding to the import service.
"""

from pathlib import Path
from typing import List, Iterable, Optional

SUPPORTED_EXT = {'.json'}
DEFAULT_SKIP_KEYWORDS = ('draft', 'template')


def _should_skip(file_path: Path, skip_keywords: Iterable[str]) -> bool:
    """Return True if filename contains any skip keyword (case-insensitive)."""
    name = file_path.name.lower()
    for kw in skip_keywords:
        if kw and kw.lower() in name:
            return True
    return False


def find_exam_files(root: Path, certification: Optional[str] = None, skip_keywords: Optional[Iterable[str]] = None) -> List[Path]:
    """Return file paths for exam definition files.

    If `certification` is provided only `root/<certification>` is
    searched; otherwise the whole tree under `root` is scanned. Files
    whose names contain any of `skip_keywords` are ignored so drafts and
    templates are not imported.
    """
    skip_keywords = list(skip_keywords) if skip_keywords is not None else list(DEFAULT_SKIP_KEYWORDS)
    if certification:
        search_root = root / certification
        if not search_root.exists():
            return []
    else:
        search_root = root
    files = [
        f for f in search_root.rglob('*')
        if f.is_file() and f.suffix.lower() in SUPPORTED_EXT and not _should_skip(f, skip_keywords)
    ]
    # sort for deterministic order
    return sorted(set(files))
