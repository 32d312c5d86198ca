"""
PrivyBallot Logging System
==========================

A unified, thread-safe logging utility for the PrivyBallot client. This module
integrates the standard Python `logging` library with `rich` so that proposal
ids, account addresses, content identifiers and gate decisions stand out in
console output.

Usage:
    >>> from privyballot.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Synchronized 4 proposals")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

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


# Log file lives next to the working directory so a client session keeps its own history
LOG_FILE_PATH = Path.cwd() / "logs" / "privyballot.log"


def resolve_formats(log_format: str, date_format: str):
    """
    Returns the (log, date) format pair to use. Either one falls back to its
    default when it is empty or cannot render a record.
    """
    default_log, default_date = str(LOG_FORMAT.default()), str(LOG_DATE_FORMAT.default())
    log_format = str(log_format or default_log)
    date_format = str(date_format or default_date)

    record = logging.LogRecord(
        name="privyballot", level=logging.INFO, pathname="", lineno=0,
        msg="check", args=(), exc_info=None,
    )
    try:
        logging.Formatter(fmt=log_format).format(record)
    except (ValueError, KeyError, TypeError) as e:
        print(f"privyballot.logger - Invalid log format ({e}). Using default.", file=sys.stderr)
        log_format = default_log

    if "%" not in date_format:
        print("privyballot.logger - Invalid date format. Using default.", file=sys.stderr)
        date_format = default_date

    return log_format, date_format


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    The logging subsystem is initialized exactly once per process. Console
    output goes through a `RichHandler`; file output through a rotating
    handler when enabled.

    Attributes:
        _instance (LogManager): The singleton instance.
        _lock (threading.Lock): Thread lock for atomic initialization.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()


    def __new__(cls) -> "LogManager":
        """Creates or returns the existing singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance


    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True


    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Configures the root logger with console and file handlers.

        Args:
            log_level (Optional[str]): Logging level (DEBUG, INFO, etc.). Defaults to `.env`.
            log_file (Optional[Path]): Log file path. Defaults to `logs/privyballot.log`.
            console_output (bool): Enable console logging. Defaults to True.
            file_output (Optional[bool]): Enable rotating file logging. Defaults to `LOG_FILE_OUTPUT`.
        """
        with self._lock:
            if self._configured:
                return

            level_str = log_level or LOG_LEVEL
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)

            # Transport libraries log every request at INFO; our own wrapper already does
            for lib in ["httpx", "httpcore", "aiosqlite"]:
                logging.getLogger(lib).setLevel(logging.WARNING)

            root_logger.handlers.clear()

            log_format, date_format = resolve_formats(LOG_FORMAT, LOG_DATE_FORMAT)

            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    ballot_theme = Theme(
                        {
                            "ballot.account":         "cyan",
                            "ballot.arrow":           "bold yellow",
                            "ballot.cid":             "bright_blue",
                            "ballot.gate_denied":     "bold yellow",
                            "ballot.level_critical":  "bold red reverse",
                            "ballot.level_debug":     "bold dim",
                            "ballot.level_error":     "bold red",
                            "ballot.level_info":      "bold green",
                            "ballot.level_warning":   "bold yellow",
                            "ballot.logger_name":     "magenta",
                            "ballot.network_error":   "bold red",
                            "ballot.proposal":        "bold magenta",
                            "ballot.rpc_method":      "bold white",
                            "ballot.timestamp":       "bold cyan",
                            "ballot.url":             "cyan",
                        }
                    )

                    console = Console(theme=ballot_theme, highlight=False, stderr=True)

                    rich_handler = RichHandler(
                        console=console,
                        highlighter=BallotLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        omit_repeated_times=False,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                    rich_handler.setLevel(numeric_level)
                    rich_handler.setFormatter(formatter)
                    root_logger.addHandler(rich_handler)
                else:
                    console_handler = logging.StreamHandler(sys.stderr)
                    console_handler.setLevel(numeric_level)
                    console_handler.setFormatter(formatter)
                    root_logger.addHandler(console_handler)

            if file_output if file_output is not None else bool(LOG_FILE_OUTPUT):
                log_file_path = log_file or LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True


    def reconfigure(self, **kwargs) -> None:
        """Drops the current configuration and applies a new one (CLI --log-level)."""
        with self._lock:
            self._configured = False
        self.configure(**kwargs)


    def get_logger(self, name: str) -> logging.Logger:
        """
        Retrieves a configured logger instance for a specific module.

        Args:
            name (str): The name of the logger (typically `__name__`).

        Returns:
            logging.Logger: A configured standard Python logger.
        """
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


    @property
    def is_configured(self) -> bool:
        """Returns True if the logging system has been successfully configured."""
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    A formatter that strips ANSI escape sequences and non-printable control
    characters. Proposal titles and gateway responses are remote input and
    end up in log lines.
    """

    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars (0x00-0x1F) excluding Tab and Newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")


    @classmethod
    def sanitize(cls, text: str) -> str:
        """
        Removes potentially dangerous characters from the provided text.

        Args:
            text (str): The raw log message.

        Returns:
            str: The sanitized message safe for terminal output.
        """
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text


    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class BallotLogHighlighter(RegexHighlighter):
    """
    Rich highlighter for client logs: proposal references, account
    addresses, content identifiers, JSON-RPC methods and gate decisions.
    """

    base_style = "ballot."
    highlights = [
        r"(?P<arrow>(\-\->)|(<--))",
        r"(?P<account>\b0x[0-9a-fA-F]{40}\b)",
        r"(?P<cid>\b(Qm[1-9A-HJ-NP-Za-km-z]{44}|baf[a-z2-7]{56})\b)",
        r"(?P<gate_denied>\b(THROTTLED|COOLDOWN|BACKOFF)\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<network_error>NETWORK_ERROR)",
        r"(?P<proposal>[Pp]roposal #\d+)",
        r"(?P<rpc_method>\beth_[A-Za-z]+\b)",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]


_manager = LogManager()

def get_logger(name: str) -> logging.Logger:
    """
    Public accessor of the logging system.
    Delegates to the singleton LogManager, ensuring configuration is applied.

    Args:
        name (str): The name of the module requesting the logger.

    Returns:
        logging.Logger: The configured logger instance.
    """
    return _manager.get_logger(name)


def configure_logging(**kwargs) -> None:
    """Re-applies logging configuration, e.g. with a level from the config file."""
    _manager.reconfigure(**kwargs)
