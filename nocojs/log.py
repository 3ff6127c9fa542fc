"""
Logging setup and structured log collection for nocojs.
"""

import enum
import logging
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger('nocojs')


class LogLevel(enum.IntEnum):
    """Verbosity of the structured logs returned to callers."""
    NONE = 0
    ERROR = 1
    INFO = 2
    VERBOSE = 3

    @classmethod
    def parse(cls, value) -> "LogLevel":
        """Accept a LogLevel, its lowercase name or its integer value."""
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown log level: {value!r}") from None
        return cls(value)

    @property
    def label(self) -> str:
        return self.name.lower()

    def to_logging(self) -> int:
        return _PYTHON_LEVELS[self]


_PYTHON_LEVELS = {
    LogLevel.NONE: logging.CRITICAL + 1,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.INFO: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
}


@dataclass(frozen=True)
class LogEntry:
    """One structured log record returned from transform/get_placeholder."""
    level: LogLevel
    message: str
    identifier: Optional[str] = None  # image URL or path the entry is about
    decision: Optional[str] = None    # 'hit', 'miss', 'error' or 'skip'

    def to_dict(self) -> dict:
        data = {"level": self.level.label, "message": self.message}
        if self.identifier is not None:
            data["identifier"] = self.identifier
        if self.decision is not None:
            data["decision"] = self.decision
        return data


class LogCollector:
    """
    Collects LogEntry objects for a single entry point call.

    Every message is forwarded to the ``nocojs`` logger as well, so process
    wide logging configuration still sees it. Only entries at or below the
    configured level are kept.
    """

    def __init__(self, level: LogLevel = LogLevel.ERROR, prefix: str = ""):
        self.level = LogLevel.parse(level)
        self.prefix = prefix
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()

    def log(self, level: LogLevel, message: str, identifier: Optional[str] = None,
            decision: Optional[str] = None) -> None:
        if self.prefix:
            logger.log(level.to_logging(), f"{self.prefix}: {message}")
        else:
            logger.log(level.to_logging(), message)
        if level == LogLevel.NONE or level > self.level:
            return
        with self._lock:
            self._entries.append(LogEntry(level, message, identifier, decision))

    def error(self, message: str, **kwargs) -> None:
        self.log(LogLevel.ERROR, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.log(LogLevel.INFO, message, **kwargs)

    def verbose(self, message: str, **kwargs) -> None:
        self.log(LogLevel.VERBOSE, message, **kwargs)

    @property
    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def has_errors(self) -> bool:
        return any(entry.level == LogLevel.ERROR for entry in self.entries)


class QuietFilter(logging.Filter):
    """Filter to control which log records are emitted."""
    def __init__(self, quiet=False):
        super().__init__()
        self.quiet = quiet

    def filter(self, record):
        # In quiet mode, only let through ERROR or higher level messages
        if self.quiet and record.levelno < logging.ERROR:
            return False
        return True


def configure_logging(debug: bool = False, verbose: bool = False, quiet: bool = False,
                      log_file: Optional[str] = None) -> None:
    """
    Configure the ``nocojs`` logger for command line use.

    Args:
        debug: Show DEBUG messages on the console
        verbose: Show INFO messages on the console
        quiet: Only show errors on the console
        log_file: Optional file that always receives INFO (or DEBUG) output
    """
    # Handlers do their own filtering
    logger.setLevel(logging.DEBUG)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, 'w', encoding='utf-8')
            file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-8s: %(message)s'))
            file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"FATAL: Failed to create log file '{log_file}': {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    if debug:
        console_handler.setLevel(logging.DEBUG)
    elif verbose:
        console_handler.setLevel(logging.INFO)
    else:
        console_handler.setLevel(logging.WARNING)
    console_handler.addFilter(QuietFilter(quiet))
    logger.addHandler(console_handler)

    logger.propagate = False
