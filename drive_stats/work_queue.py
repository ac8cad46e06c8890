# drive_stats/work_queue.py
"""Shared file cursor handing each input file to exactly one worker."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path

logger = logging.getLogger(__name__)


def iter_candidate_paths(input_path: Path | str) -> Iterator[Path]:
    """
    Lazily enumerate candidate files under ``input_path``.

    A file yields itself; a directory is walked recursively. Entries are sorted per
    directory so logs read in a stable order; processing order is not relied on.

    Raises:
        FileNotFoundError: If ``input_path`` does not exist
    """
    root = Path(input_path)
    # Validated before the first entry is requested.
    if not root.exists():
        raise FileNotFoundError(f"Input path not found: {root}")

    if root.is_file():
        return iter([root])
    return _walk_files(root)


def _walk_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            yield Path(dirpath) / name


class FileWorkQueue:
    """Mutex-guarded cursor over a single-pass sequence of paths."""

    def __init__(self, entries: Iterable[Path | str], extension: str = ".csv") -> None:
        self._entries = iter(entries)
        self._extension = extension.lower()
        self._lock = threading.Lock()
        self._exhausted = False
        self.handed_out = 0
        self.skipped = 0

    def next_file(self) -> Path | None:
        """Return the next matching file, or None once the sequence is exhausted."""
        with self._lock:
            if self._exhausted:
                return None
            for entry in self._entries:
                path = Path(entry)
                if path.suffix.lower() != self._extension:
                    self.skipped += 1
                    continue
                self.handed_out += 1
                logger.info("Processing %s", path)
                return path
            self._exhausted = True
            return None

    def __iter__(self) -> Iterator[Path]:
        while (path := self.next_file()) is not None:
            yield path
