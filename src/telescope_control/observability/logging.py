"""Structured logging for telescope-control.

Every module logs through a StructuredLogger obtained from get_logger().
Keyword arguments given to a logging call are kept on the record as
``structured_data`` instead of being formatted into the message, and the
values of any enclosing LogContext are merged in first.

StructuredFormatter renders those records as text with trailing
``| key=value`` pairs; JSONFormatter writes one JSON object per line for
unattended observatories. SlotLogHandler copies records that carry a
``slot`` field into that slot's server log file.

Mount names and host names come from user-edited documents, so pass them as
keyword arguments rather than interpolating them into the message:

    logger.info("Slot started", slot=3, name=description.name)

Example:
    logger = get_logger(__name__)
    logger.info("Transport connected", slot=1, host="10.0.0.5", port=10001)

    with LogContext(slot=2):
        logger.debug("Goto sent", timestamp_us=12345)

    configure_logging(json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol, cast, runtime_checkable

#: Name of the package logger every module logger descends from.
ROOT_LOGGER_NAME = "telescope_control"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose calls accept arbitrary keyword arguments.

    The level methods inherited from logging.Logger forward their keyword
    arguments to _log(), the only method overridden here. Anything that is
    not a standard logging parameter ends up in the record's
    ``structured_data`` together with the active LogContext.

    Usage:
        logger = get_logger("telescope_control.loop")
        logger.warning("Framing error", slot=4, length=2)
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: Mapping[str, object] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        # Call-site fields win over LogContext values with the same key.
        record_extra = dict(extra) if extra else {}
        record_extra["structured_data"] = {**_log_context.get(), **fields}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=record_extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Text formatter: ``time - logger - LEVEL - message | key=value ...``"""

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """
        Args:
            fmt: %-style format, DEFAULT_FORMAT when omitted.
            datefmt: strftime format for %(asctime)s.
            include_structured: Append the record's fields after the message.
        """
        super().__init__(fmt or self.DEFAULT_FORMAT, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "structured_data", None)
        if not self.include_structured or not fields:
            return line
        pairs = " ".join(f"{key}={_format_value(val)}" for key, val in fields.items())
        return f"{line} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; structured fields become top-level keys.

    Values json cannot encode are written with str(). A traceback, when the
    record has one, goes under "exception".
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "structured_data", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _format_value(value: Any) -> str:
    """Render one field for StructuredFormatter.

    Example:
        >>> _format_value("Meade LX200")
        '"Meade LX200"'
        >>> _format_value((0.0, 0.0, 1.0))
        '[0.0, 0.0, 1.0]'
        >>> _format_value(None)
        'null'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"' if " " in value else value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


class LogContext:
    """Adds fields to every record logged inside a ``with`` block.

    Contexts nest: an inner block sees the outer fields plus its own, and
    the outer set is restored on exit. The communication loop wraps each
    slot's turn in LogContext(slot=N), which is what routes transport
    records into that slot's server log.

    Usage:
        with LogContext(slot=1):
            logger.info("Polling")  # slot=1

            with LogContext(phase="flush"):
                logger.info("Sending")  # slot=1 phase=flush
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __repr__(self) -> str:
        return f"LogContext({self._fields!r})"

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Attach the console handler to the package logger.

    Only the first call has an effect unless force=True, which removes the
    existing handlers first. The package logger does not propagate, so an
    application's own root configuration is left alone.

    Args:
        level: Threshold as a number or a name such as "DEBUG".
        json_format: Write JSON lines instead of text.
        stream: Destination, sys.stderr by default.
        include_structured: Text mode only; append ``| key=value`` pairs.
        force: Replace an earlier configuration.

    Example:
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _remove_handlers()
        _install_handler(level, json_format, stream, include_structured)


def _install_handler(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    # Caller holds _config_lock.
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(sys.stderr if stream is None else stream)
    formatter: logging.Formatter = (
        JSONFormatter()
        if json_format
        else StructuredFormatter(include_structured=include_structured)
    )
    handler.setFormatter(formatter)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    package_logger.propagate = False

    _configured = True


def _remove_handlers() -> None:
    # Caller holds _config_lock.
    global _configured

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Drop every handler from the package logger (used by tests).

    The next configure_logging() or get_logger() call sets it up again.
    """
    with _config_lock:
        _remove_handlers()


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for a module, usually ``__name__``.

    The first call configures logging with the defaults (INFO, text,
    stderr) when configure_logging() has not run yet.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Slot stopped", slot=2, clean=True)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _install_handler()

    # setLoggerClass() ran in _install_handler().
    return cast(StructuredLogger, logging.getLogger(name))


# =============================================================================
# Per-slot log routing
# =============================================================================


@runtime_checkable
class SlotStream(Protocol):  # pragma: no cover
    """Text sink of one slot's server log."""

    def write_line(self, text: str) -> None:
        ...


class SlotLogHandler(logging.Handler):
    """Copies records carrying an integer ``slot`` field into that slot's log.

    The stream getter is asked on every record, so logs opened or closed
    after the handler was attached are followed without re-registering it.
    A slot without an open log gets nothing; the console handler is
    unaffected either way.

    Usage:
        handler = SlotLogHandler(registry.log_stream_at_slot)
        logging.getLogger("telescope_control").addHandler(handler)
    """

    # Per-thread flag set while a record is being written.
    _local = threading.local()

    def __init__(
        self,
        stream_getter: Callable[[int], SlotStream | None],
        level: int = logging.NOTSET,
    ) -> None:
        super().__init__(level)
        self._get_stream = stream_getter
        self.setFormatter(StructuredFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        """Write the record to its slot's stream.

        Records logged while writing (for example by the stream itself) are
        ignored. Write errors go to handleError().
        """
        if getattr(self._local, "emitting", False):
            return

        slot = getattr(record, "structured_data", {}).get("slot")
        if not isinstance(slot, int) or isinstance(slot, bool):
            return

        self._local.emitting = True
        try:
            stream = self._get_stream(slot)
            if stream is not None:
                stream.write_line(self.format(record))
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False
