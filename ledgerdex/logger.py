"""
ledgerdex Logging System
========================

Console logging through ``rich`` with an optional rotating file, set up
once for the ``ledgerdex`` package logger. Contract code never prints;
it logs, and the host decides the level from its ``EngineConfig``.

Usage:
    >>> from ledgerdex.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Pool deployed")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_FILE_OUTPUT,
)

PACKAGE_LOGGER = "ledgerdex"
LOG_FILE_PATH = Path(__file__).parent.parent / "logs" / "ledgerdex.log"

LEDGERDEX_THEME = Theme({
    "ledgerdex.address":  "cyan",
    "ledgerdex.event":    "bold magenta",
    "ledgerdex.reason":   "bold red",
    "ledgerdex.slot":     "bold yellow",
    "ledgerdex.amount":   "green",
    "ledgerdex.logger":   "magenta",
    "ledgerdex.time":     "dim cyan",
})


def _level(name: Optional[str]) -> int:
    return getattr(logging, str(name or "INFO").upper(), logging.INFO)


def _complain(message: str) -> None:
    # The logging system is not up yet, so fall back to stderr
    print(f"ledgerdex.logger: {message}", file=sys.stderr)


def checked_formats(log_format: str, date_format: str):
    """
    Returns ``(log_format, date_format)`` with each one replaced by its
    default when it does not render a sample record cleanly.
    """
    sample = logging.LogRecord("ledgerdex.check", logging.INFO, "", 0, "sample", (), None)
    try:
        rendered = logging.Formatter(fmt=str(log_format or LOG_FORMAT.default())).format(sample)
        if "%(" in rendered:
            raise ValueError("unresolved placeholder")
    except (ValueError, KeyError, TypeError) as exc:
        _complain(f"bad LOG_FORMAT ({exc}), using default")
        log_format = LOG_FORMAT.default()

    date_format = str(date_format or LOG_DATE_FORMAT.default())
    if "%" not in date_format or re.search(r"%[^A-Za-z%]", date_format):
        _complain("bad LOG_DATE_FORMAT, using default")
        date_format = LOG_DATE_FORMAT.default()
    return str(log_format), date_format


class TerminalSafeFormatter(logging.Formatter):
    """
    Drops ANSI escapes and control characters from the rendered line.
    Event payloads embed user-chosen token names and symbols.
    """

    _unsafe = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]|[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        return cls._unsafe.sub("", text) if text else text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class LedgerLogHighlighter(RegexHighlighter):
    """Colours addresses, event tags, reason codes and slots in log lines."""

    base_style = "ledgerdex."
    highlights = [
        r"(?P<time>^\S+ UTC)",
        r"\s-\s(?P<logger>ledgerdex[\w.]*)\s-\s",
        r"(?P<address>\bA[SU]1[0-9a-zA-Z]{8,}\b)",
        r"(?P<event>\b[A-Z][A-Za-z]*(?:AutoChecker|AutoScheduled|AutoExecute|Order|Executed)\b)",
        r"(?P<reason>\b[A-Z][A-Z0-9]+(?:_[A-Z0-9]+)+\b)",
        r"(?P<slot>\(\d+:\d+\))",
        r"(?P<amount>\b\d{4,}\b)",
    ]


class LogManager:
    """
    Process-wide owner of the ``ledgerdex`` logger's handlers.

    Configured lazily on the first ``get_logger`` call; the host may change
    the level afterwards without rebuilding handlers.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._handlers = []
                cls._instance._configured = False
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        with self._lock:
            if self._configured:
                return

            log_format, date_format = checked_formats(LOG_FORMAT, LOG_DATE_FORMAT)
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            handlers: List[logging.Handler] = []
            if console_output:
                handlers.append(self._console_handler())
            if LOG_FILE_OUTPUT if file_output is None else file_output:
                handlers.append(self._file_handler(log_file or LOG_FILE_PATH))

            # Handlers hang off the package logger so host applications keep their root config
            package_logger = logging.getLogger(PACKAGE_LOGGER)
            package_logger.handlers.clear()
            for handler in handlers:
                handler.setFormatter(formatter)
                package_logger.addHandler(handler)

            self._handlers = handlers
            self._configured = True
        self.set_level(log_level or LOG_LEVEL)

    @staticmethod
    def _console_handler() -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            return logging.StreamHandler(sys.stderr)
        return RichHandler(
            console=Console(theme=LEDGERDEX_THEME, highlight=False, stderr=True),
            highlighter=LedgerLogHighlighter(),
            keywords=[],
            rich_tracebacks=True,
            markup=False,
            show_path=False,
            show_time=False,
            show_level=True,
        )

    @staticmethod
    def _file_handler(path: Path) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )

    def set_level(self, log_level: str) -> None:
        if not self._configured:
            self.configure(log_level=log_level)
            return
        level = _level(log_level)
        logging.getLogger(PACKAGE_LOGGER).setLevel(level)
        for handler in self._handlers:
            handler.setLevel(level)

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Returns ``logging.getLogger(name)`` once the package handlers are in place."""
    return _manager.get_logger(name)


def set_log_level(log_level: str) -> None:
    _manager.set_level(log_level)
