"""Per-cycle JSONL journal for the candle-close trading agent."""

import json
import os
import threading
from dataclasses import asdict
from typing import Iterable, Optional

from kline_agent.models import CycleLog


class CycleLogger:
    """Handles structured logging of scheduler cycles to JSONL format."""

    def __init__(self, log_file: str, secrets: Optional[Iterable[str]] = None):
        """
        Initialize logger with output file path.

        Args:
            log_file: Path to JSONL log file (will be created if doesn't exist)
            secrets: Credential values that must never appear in the journal
        """
        self.log_file = log_file
        self._secrets = [s for s in (secrets or []) if s]
        self._lock = threading.Lock()

        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    def log_cycle(self, cycle_log: CycleLog) -> None:
        """
        Append cycle log to JSONL file.

        Writes one JSON object per line in append-only mode and flushes after
        each write. Instruments share this file, so writes are serialised.

        Args:
            cycle_log: Complete cycle log record
        """
        log_dict = self._sanitize_log(asdict(cycle_log))
        line = json.dumps(log_dict, ensure_ascii=False)
        with self._lock:
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(line + '\n')
                f.flush()

    def _sanitize_log(self, log_dict: dict) -> dict:
        """
        Redact any configured credential from string fields.

        Args:
            log_dict: Log dictionary to sanitize

        Returns:
            Sanitized log dictionary
        """
        for key, value in log_dict.items():
            if isinstance(value, str):
                for secret in self._secrets:
                    if secret in value:
                        value = value.replace(secret, "[REDACTED]")
                log_dict[key] = value
        return log_dict
