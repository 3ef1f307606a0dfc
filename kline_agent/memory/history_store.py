"""Bounded, file-backed history of compressed cycle decisions.

One record per line, oldest first. Once more than ``max_lines`` records are
held, the oldest are dropped and the file is rewritten with what remains.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import List

logger = logging.getLogger(__name__)


class HistoryStore:
    """Append-only ring of free-text history lines persisted as UTF-8 text."""

    def __init__(self, path: str, max_lines: int = 20) -> None:
        if max_lines <= 0:
            raise ValueError("max_lines must be greater than 0")
        self.path = path
        self.max_lines = max_lines
        self._lock = threading.RLock()

    def _load_lines(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]

    def lines(self) -> List[str]:
        """Return the retained records, oldest first."""
        with self._lock:
            return self._load_lines()

    def read(self) -> str:
        """Return the retained history as one newline-joined block ("" when empty)."""
        return "\n".join(self.lines())

    def append(self, record: str) -> None:
        """
        Append one record and re-persist the truncated set.

        Embedded newlines are collapsed to spaces so a record always occupies
        exactly one line.

        Args:
            record: Free-text history line
        """
        record = " ".join(record.split())
        if not record:
            logger.warning(f"Ignoring empty history record for {self.path}")
            return

        with self._lock:
            lines = self._load_lines()
            lines.append(record)
            if len(lines) > self.max_lines:
                lines = lines[-self.max_lines:]

            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
            os.replace(tmp_path, self.path)

        logger.debug(f"History updated ({len(lines)}/{self.max_lines} lines): {self.path}")
