"""Structured logging with structlog.

Every entry emitted while a graph lookup is in progress carries the book,
chapter and event it concerns, taken from context variables bound through
``graph_context``. The library never configures logging on import; the host
application calls ``setup_logging`` once.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from readergraph.config import Settings

book_id_var: ContextVar[int | None] = ContextVar("book_id", default=None)
chapter_var: ContextVar[int | None] = ContextVar("chapter", default=None)
event_var: ContextVar[int | None] = ContextVar("event_idx", default=None)

_CONTEXT_FIELDS = (("book_id", book_id_var), ("chapter", chapter_var), ("event_idx", event_var))


def add_graph_context(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Copy the bound book/chapter/event into the entry unless set explicitly."""
    for field, var in _CONTEXT_FIELDS:
        value = var.get()
        if value is not None:
            event_dict.setdefault(field, value)
    return event_dict


@contextmanager
def graph_context(
    book_id: int | None = None,
    chapter: int | None = None,
    event_idx: int | None = None,
) -> Iterator[None]:
    """Bind lookup coordinates for the duration of the block.

    Only the arguments given are bound; the others keep their outer value.
    """
    tokens = [
        (var, var.set(value))
        for (_, var), value in zip(_CONTEXT_FIELDS, (book_id, chapter, event_idx), strict=True)
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    settings: Settings | None = None,
) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        log_level: Minimum level name. Ignored when ``settings`` is given.
        log_format: "json" for machine-readable output, "console" for humans.
            Ignored when ``settings`` is given.
        settings: Take ``log_level`` and ``log_format`` from here instead.
    """
    if settings is not None:
        log_level, log_format = settings.log_level, settings.log_format

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_graph_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if log_format == "json":
        tail: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        tail = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *tail],
        )
    )

    package_logger = logging.getLogger("readergraph")
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(log_level.upper())
    package_logger.propagate = False

    # Transport chatter drowns the per-event discovery logs
    for noisy in ("httpx", "httpcore", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module (pass ``__name__``)."""
    return structlog.get_logger(name)
