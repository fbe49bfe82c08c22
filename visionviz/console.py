"""
LogConsole: the user-facing, append-only log.

Entries are kept newest-last and every entry is mirrored to the standard
``logging`` module. Appending never blocks and never raises.
"""

import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    id: int
    timestamp: float
    message: str
    severity: Severity


class LogConsole:
    """Append-only log shown to the user."""

    def __init__(self, mirror: Optional[logging.Logger] = None):
        self._entries: List[LogEntry] = []
        self._ids = itertools.count(1)
        self._mirror = mirror or logger

    def log(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        severity = Severity(severity)
        entry = LogEntry(
            id=next(self._ids),
            timestamp=time.time(),
            message=message,
            severity=severity,
        )
        self._entries.append(entry)
        self._mirror.log(_LEVELS[severity], f"[{severity.value}] {message}")
        return entry

    def info(self, message: str) -> LogEntry:
        return self.log(message, Severity.INFO)

    def success(self, message: str) -> LogEntry:
        return self.log(message, Severity.SUCCESS)

    def error(self, message: str) -> LogEntry:
        return self.log(message, Severity.ERROR)

    @property
    def entries(self) -> List[LogEntry]:
        """Snapshot of all entries, oldest first."""
        return list(self._entries)

    def messages(self, severity: Optional[Severity] = None) -> List[str]:
        return [
            e.message
            for e in self._entries
            if severity is None or e.severity == Severity(severity)
        ]

    def tail(self, n: int = 10) -> List[LogEntry]:
        return self._entries[-n:] if n > 0 else []

    def __len__(self) -> int:
        return len(self._entries)
