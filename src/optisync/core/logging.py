"""
Structured logging for optisync.

Every module logs through ``get_logger(__name__)`` and emits dotted,
snake-case event names with key/value context, so a mutation can be
followed across apply, retry, commit and rollback by its ``operation_id``.

Processor chain::

    configure_logging(level, json_format, service)
        │
        ▼
      [TimeStamper(iso)]            optional
      merge_contextvars             ← LogContext / bind_context
      add_log_level
      _name_logger                  ← logger=<module name>
      _stamp_service                ← service=<name>
      _stringify_errors             ← exceptions passed as error=... become text
      StackInfoRenderer, set_exc_info
      JSONRenderer | ConsoleRenderer

Examples:
    >>> from optisync.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="notes-client")
    >>> log = get_logger(__name__)
    >>> log.info("sync.applied", operation_id="op-1", data_type="notes")

    Scoped context for one mutation:

    >>> with LogContext(operation_id="op-1", data_type="notes"):
    ...     log.info("sync.committed")
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "optisync"


def _name_logger(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    name = event_dict.pop("logger_name", None)
    if name is not None:
        event_dict.setdefault("logger", name)
    return event_dict


def _stamp_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


def _stringify_errors(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    error = event_dict.get("error")
    if isinstance(error, BaseException):
        event_dict["error"] = str(error) or error.__class__.__name__
    return event_dict


def _processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso"))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _name_logger,
        _stamp_service,
        _stringify_errors,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if json_format:
        chain += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "optisync",
    add_timestamp: bool = True,
) -> None:
    """Install the optisync structlog configuration.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, console when False; None picks
            JSON unless stdout is a terminal
        service: Value of the ``service`` field on every line
        add_timestamp: Prefix each line with an ISO timestamp
    """
    global _service
    _service = service

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown log level: {level!r}")
    if json_format is None:
        json_format = not sys.stdout.isatty()

    structlog.configure(
        processors=_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    logging.getLogger().setLevel(numeric_level)


def configure_from_settings(settings: Any, **overrides: Any) -> None:
    """Configure logging from a ``SyncSettings`` instance.

    Keyword ``overrides`` (``level``, ``json_format``, ``service``,
    ``add_timestamp``) win over the settings values.
    """
    options: dict[str, Any] = {
        "level": settings.log_level,
        "json_format": settings.json_logs,
        "service": settings.service_name,
    }
    options.update(overrides)
    configure_logging(**options)


def get_logger(name: str | None = None) -> Any:
    """Return a lazy structlog logger; ``name`` is rendered as the ``logger`` field.

    The logger resolves the active configuration on each call, so module-level
    loggers created at import time follow a later ``configure_logging``.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name, logger_name=name)


def bind_context(**values: Any) -> None:
    """Attach ``values`` to every line logged by the current task."""
    structlog.contextvars.bind_contextvars(**values)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind log fields for the duration of a block (sync or async).

    Bindings live in contextvars, so two mutations interleaved on one event
    loop each see only their own ``operation_id``. Leaving the block
    restores whatever was bound before, including outer LogContexts.
    """

    def __init__(self, **bindings: Any):
        self._bindings = bindings
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._bindings)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
