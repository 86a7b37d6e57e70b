"""
Rostering Engine: Logging Infrastructure
========================================
stdlib logging for the ``rostering`` logger tree.

Levels:
    TRACE (5): Function entry/exit, per-employee exclusion codes
    DEBUG (10): Slot progress, chosen candidate and score
    INFO (20): Run phases, fairness target met
    WARNING (30): Coverage gaps, emergency overrides, fairness target missed
    ERROR (40): Failed runs

Usage:
    from rostering.utils.logging_setup import setup_logging, get_logger

    setup_logging(level="DEBUG", log_file="logs/rostering.log")
    logger = get_logger("rostering.solver.engine")
"""
import functools
import logging
import sys
from contextlib import contextmanager
from datetime import date
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TextIO

PACKAGE_LOGGER = "rostering"

# Below DEBUG
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class ColoredFormatter(logging.Formatter):
    """Level-colored console lines when the target stream is a terminal."""

    COLORS = {
        TRACE: "\033[90m",             # Gray
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str, stream: TextIO):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = hasattr(stream, "isatty") and stream.isatty()

    def format(self, record):
        message = super().format(record)
        color = self.COLORS.get(record.levelno)
        if self.use_color and color:
            return f"{color}{message}{self.RESET}"
        return message


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    if name.upper() == "TRACE":
        return TRACE
    return getattr(logging, name.upper(), default)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = "logs/rostering.log",
    console_level: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 3,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the ``rostering`` logger. Calling it again replaces the handlers.

    Args:
        level: Minimum level for the log file (TRACE, DEBUG, INFO...)
        log_file: Rotating log file path (None = console only)
        console_level: Console level (defaults to level)
        max_bytes: Max file size before rotation
        backup_count: Rotated files to keep
        stream: Console stream (defaults to stdout)

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(TRACE)  # handlers filter
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    file_level = _level(level, logging.INFO)
    cons_level = _level(console_level or level, logging.INFO)
    stream = stream or sys.stdout

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(cons_level)
    console_handler.setFormatter(ColoredFormatter(
        "[%(asctime)s] %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=stream,
    ))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.debug(
        f"Logging ready: console={logging.getLevelName(cons_level)}, "
        f"file={logging.getLevelName(file_level) if log_file else 'disabled'}"
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, e.g. ``get_logger("rostering.audit.store")``."""
    return logging.getLogger(name)


def _brief(value: Any, limit: int = 50) -> str:
    """Short rendering of an argument: sizes for collections, ISO for dates."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, dict)):
        return f"<{type(value).__name__} len={len(value)}>"
    text = repr(value)
    return text if len(text) <= limit else text[:limit - 3] + "..."


def log_function_call(func: Callable) -> Callable:
    """
    Log entry (with condensed arguments) and exit at TRACE; exceptions at ERROR.

    Usage:
        @log_function_call
        def recommend_candidates(...):
            ...
    """
    logger = logging.getLogger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        name = func.__name__
        if logger.isEnabledFor(TRACE):
            parts = [_brief(a) for a in args[:4]]
            parts += [f"{k}={_brief(v, 30)}" for k, v in list(kwargs.items())[:4]]
            logger.log(TRACE, f"→ {name}({', '.join(parts)})")
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"✖ {name} raised: {type(e).__name__}: {e}")
            raise
        logger.log(TRACE, f"← {name} returned: {_brief(result, 100)}")
        return result

    return wrapper


def log_constraint(
    logger: logging.Logger,
    name: str,
    satisfied: bool,
    details: str = "",
    level: int = logging.DEBUG,
):
    """Log one rule check: violations at WARNING, passes at ``level``."""
    msg = f"[{'✓' if satisfied else '✗'}] {name}"
    if details:
        msg += f" ({details})"
    if satisfied:
        logger.log(level, msg)
    else:
        logger.warning(msg)


class SolverLogger:
    """
    Indented progress log for a scheduling run.

    ``slot`` brackets the work on one coverage slot; anything logged inside is
    indented under it and the closing line reports how many positions were
    filled.
    """

    def __init__(self, name: str = "rostering.solver"):
        self.logger = logging.getLogger(name)
        self.indent = 0

    def _prefix(self) -> str:
        return "  " * self.indent

    def phase(self, title: str):
        self.logger.info(f"{'=' * 20} {title} {'=' * 20}")

    def step(self, description: str):
        self.logger.info(f"{self._prefix()}▸ {description}")

    @contextmanager
    def slot(self, slot: Any) -> Iterator[Any]:
        """``slot`` needs ``date``, ``shift_type``, ``required_count`` and ``actual_filled``."""
        self.logger.debug(
            f"{self._prefix()}┌─ {slot.date.isoformat()} {slot.shift_type.value} x{slot.required_count}"
        )
        self.indent += 1
        try:
            yield slot
        finally:
            self.indent = max(0, self.indent - 1)
            self.logger.debug(f"{self._prefix()}└─ filled {slot.actual_filled}/{slot.required_count}")

    def candidate(self, employee_id: str, score: float, eligible: int, override: bool = False):
        """The candidate chosen for one position."""
        flag = " [override]" if override else ""
        self.logger.debug(f"{self._prefix()}{employee_id}: score={score:.3f} eligible={eligible}{flag}")

    def exclusions(self, excluded: Dict[str, List[str]]):
        """Excluded employee ids grouped by exclusion code."""
        for code in sorted(excluded):
            self.logger.log(TRACE, f"{self._prefix()}✗ {code}: {', '.join(excluded[code])}")
