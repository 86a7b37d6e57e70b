"""
Structured Logging
==================
structlog events for scheduling runs.

The engine emits one event per run milestone (``generation_started``,
``generation_finished``, ``generation_failed``) inside ``run_context`` so every
event carries the schedule and tenant ids.

Usage:
    from rostering.utils.structured_logging import get_structured_logger, run_context

    events = get_structured_logger("rostering.solver.engine")
    with run_context(schedule_id="s-1", tenant_id="t-1"):
        events.info("generation_started", slots=42, employees=10)
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, TextIO

import structlog
import structlog.contextvars

RUN_KEYS = ("schedule_id", "tenant_id")


def configure_structlog(
    json_output: bool = False,
    level: int = logging.INFO,
    file: Optional[TextIO] = None,
) -> None:
    """
    Configure structlog for run events.

    Args:
        json_output: One JSON object per line (for log shipping) instead of
                     colored console lines
        level: Minimum event level
        file: Output stream (defaults to stdout)
    """
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if json_output:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=file is None),
        ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file),
        cache_logger_on_first_use=False,
    )


def get_structured_logger(name: str) -> Any:
    """Lazy structured logger; picks up whatever configuration is active when it logs."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind values onto every later event in this context (thread or task)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def run_context(schedule_id: str, tenant_id: str, **extra) -> Iterator[None]:
    """Bind the run ids (plus ``extra``) for the duration of one scheduling run."""
    bind_context(schedule_id=schedule_id, tenant_id=tenant_id, **extra)
    try:
        yield
    finally:
        unbind_context(*RUN_KEYS, *extra)
