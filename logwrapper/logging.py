from __future__ import annotations

import contextvars
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TextIO

import structlog

from logwrapper.caller import CALLER_SKIP, get_caller

Fields = Mapping[str, Any]

TRACE = 5

_LEVELS: dict[str, int] = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}

_LEVEL_NAMES: dict[int, str] = {
    TRACE: "trace",
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

# LogRecord attribute that carries merged fields from Entry.log to the formatter.
_FIELDS_ATTR = "logwrapper_fields"

# Keys owned by the rendered record; caller fields using them get a "fields." prefix.
_RESERVED_KEYS = frozenset(
    {"msg", "level", "time", "event", "timestamp", "_record", "_from_structlog"}
)

FORMAT_JSON = "json"
FORMAT_TEXT = "text"


def parse_level(level_name: str, default: int = logging.INFO) -> int:
    if not isinstance(level_name, str):
        return default
    return _LEVELS.get(level_name.strip().lower(), default)


def level_name(levelno: int) -> str:
    name = _LEVEL_NAMES.get(levelno)
    if name is not None:
        return name
    return logging.getLevelName(levelno).lower()


def _add_fields(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    record = event_dict.get("_record")
    fields: Fields = getattr(record, _FIELDS_ATTR, None) or {}
    for key, value in fields.items():
        if key in _RESERVED_KEYS:
            key = f"fields.{key}"
        event_dict[key] = value
    return event_dict


def _add_level(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    record = event_dict.get("_record")
    if record is not None:
        event_dict["level"] = level_name(record.levelno)
    return event_dict


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Render records as one JSON object per line with an RFC 3339 `time`."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            _add_fields,
            structlog.contextvars.merge_contextvars,
            _add_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="time"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.EventRenamer("msg"),
            structlog.processors.JSONRenderer(),
        ],
    )


def console_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Human-readable output for terminals: full local timestamps, forced colors."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            _add_fields,
            structlog.contextvars.merge_contextvars,
            _add_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )


_FORMATTERS: dict[str, Callable[[], structlog.stdlib.ProcessorFormatter]] = {
    FORMAT_JSON: json_formatter,
    FORMAT_TEXT: console_formatter,
}


@dataclass(frozen=True)
class Entry:
    """Fields and context for a single log call."""

    fields: dict[str, Any] = field(default_factory=dict)
    context: contextvars.Context | None = None

    @classmethod
    def from_call(cls, ctx: contextvars.Context | None, fields: Fields | None) -> Entry:
        return cls(dict(fields or {}), ctx)

    def with_fields(self, fields: Fields | None) -> Entry:
        if not fields:
            return self
        return Entry({**self.fields, **fields}, self.context)

    def log(self, logger: logging.Logger, level: int, msg: str) -> None:
        extra = {_FIELDS_ATTR: self.fields}
        if self.context is None:
            logger.log(level, msg, extra=extra)
        else:
            # Formatting happens synchronously inside the handler, so
            # merge_contextvars sees the variables bound in `context`. A copy
            # can be entered even while `context` itself is running.
            self.context.copy().run(logger.log, level, msg, extra=extra)


class _StdoutHandler(logging.StreamHandler):
    """Writes to whatever `sys.stdout` is when a record is emitted."""

    def __init__(self) -> None:
        logging.Handler.__init__(self)

    @property
    def stream(self) -> TextIO:  # type: ignore[override]
        return sys.stdout


class LoggerHandle:
    """A logger, its single stdout sink, and a one-shot configuration guard.

    Construction gives the defaults: INFO level, JSON output, `sys.stdout`
    looked up at emit time, so reassigning `sys.stdout` later is honoured.
    An explicit `stream` is used as given.
    `setup` changes level and format exactly once; every later call is ignored.
    The underlying `logging.Logger` is not registered with `logging.getLogger`,
    so independent handles never share state.
    """

    def __init__(self, name: str = "logwrapper", *, stream: TextIO | None = None) -> None:
        self._logger = logging.Logger(name, logging.INFO)
        self._logger.propagate = False

        self._handler: logging.StreamHandler = (
            logging.StreamHandler(stream) if stream is not None else _StdoutHandler()
        )
        self._handler.setLevel(logging.NOTSET)
        self._logger.addHandler(self._handler)

        self._formatter_kind = FORMAT_JSON
        self._formatter = json_formatter()
        self._handler.setFormatter(self._formatter)

        self._lock = threading.Lock()
        self._configured = False

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def level(self) -> int:
        return self._logger.level

    @property
    def formatter(self) -> structlog.stdlib.ProcessorFormatter:
        return self._formatter

    @property
    def formatter_kind(self) -> str:
        return self._formatter_kind

    @property
    def configured(self) -> bool:
        return self._configured

    def setup(self, level: str, is_production: bool) -> None:
        """Apply level and output format. Only the first call has any effect.

        Unknown level names fall back to INFO. Production selects JSON,
        otherwise colored console output.
        """
        if self._configured:
            return
        with self._lock:
            if self._configured:
                return
            kind = FORMAT_JSON if is_production else FORMAT_TEXT
            self._logger.setLevel(parse_level(level))
            self._formatter = _FORMATTERS[kind]()
            self._formatter_kind = kind
            self._handler.setFormatter(self._formatter)
            self._configured = True

    # Each leveled method calls get_caller itself; see CALLER_SKIP.

    def info(self, ctx: contextvars.Context | None, msg: str, fields: Fields | None = None) -> None:
        self._log(logging.INFO, ctx, msg, fields, get_caller(CALLER_SKIP))

    def warn(self, ctx: contextvars.Context | None, msg: str, fields: Fields | None = None) -> None:
        self._log(logging.WARNING, ctx, msg, fields, get_caller(CALLER_SKIP))

    def debug(self, ctx: contextvars.Context | None, msg: str, fields: Fields | None = None) -> None:
        self._log(logging.DEBUG, ctx, msg, fields, get_caller(CALLER_SKIP))

    def error(
        self,
        ctx: contextvars.Context | None,
        msg: str,
        fields: Fields | None = None,
        err: BaseException | None = None,
    ) -> None:
        self._log(logging.ERROR, ctx, msg, fields, get_caller(CALLER_SKIP), err=err)

    def fatal(self, ctx: contextvars.Context | None, msg: str, fields: Fields | None = None) -> None:
        """Log at fatal severity, then exit the process with status 1.

        On the main thread this raises `SystemExit`. Elsewhere `SystemExit`
        would only end the calling thread, so the handler is flushed and the
        process exits immediately.
        """
        self._log(logging.CRITICAL, ctx, msg, fields, get_caller(CALLER_SKIP))
        if threading.current_thread() is threading.main_thread():
            raise SystemExit(1)
        self._handler.flush()
        logging.shutdown()
        os._exit(1)

    def _log(
        self,
        level: int,
        ctx: contextvars.Context | None,
        msg: str,
        fields: Fields | None,
        caller: dict[str, str] | None,
        err: BaseException | None = None,
    ) -> None:
        entry = Entry.from_call(ctx, fields).with_fields(caller)
        if err is not None:
            entry = entry.with_fields({"error": str(err)})
        entry.log(self._logger, level, msg)


_default = LoggerHandle()


def default_handle() -> LoggerHandle:
    return _default


# Bound methods add no frame, so caller attribution matches LoggerHandle use.
setup = _default.setup
info = _default.info
warn = _default.warn
debug = _default.debug
error = _default.error
fatal = _default.fatal
