"""
Logging for the requirements graph pipeline.

Rich renders console output; a log file, when configured, gets plain text
lines or JSON lines. Fields bound with ``LogContext`` (job id, project) live
in a context variable, so worker tasks running side by side keep their own.
"""

import contextvars
import functools
import inspect
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler

# Attributes every LogRecord carries; anything else came from extra= or context
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "context"}

THIRD_PARTY_LOGGERS = ("neo4j", "openai", "httpx", "httpcore", "sentence_transformers")

_bound_fields: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "reqgraph_bound_fields", default={}
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, then every extra field."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(_extra_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """
    Attach bound fields to each record.

    Explicit ``extra=`` values win over bound ones. ``record.context`` gets
    a ``key=value`` summary for the plain text file format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _bound_fields.get().items():
            if key not in vars(record):
                setattr(record, key, value)

        fields = _extra_fields(record)
        record.context = (" [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]") if fields else ""
        return True


def setup_logging(
    log_level: str = "INFO",
    log_file_path: Optional[Path] = None,
    use_structured_logging: bool = False,
    show_locals: bool = False,
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: Level name, e.g. ``DEBUG``
        log_file_path: Also write to this file when set
        use_structured_logging: Write JSON lines to the file instead of text
        show_locals: Include local variables in Rich tracebacks
    """
    level = log_level.upper()
    context_filter = ContextFilter()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=show_locals,
    )
    console.addFilter(context_filter)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file_path:
        path = Path(log_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(
            StructuredFormatter()
            if use_structured_logging
            else logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s%(context)s")
        )
        root.addHandler(file_handler)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured",
        extra={"log_file": str(log_file_path) if log_file_path else None, "structured": use_structured_logging},
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)


class LogContext:
    """
    Bind fields to every record logged inside the block.

    Nested contexts add to the outer one and restore it on exit.

    Usage:
        with LogContext(job_id=job.id):
            logger.info("Job started")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._tokens: list[contextvars.Token] = []

    @property
    def bound(self) -> dict[str, Any]:
        """Fields currently bound, including outer contexts."""
        return dict(_bound_fields.get())

    def __enter__(self) -> "LogContext":
        self._tokens.append(_bound_fields.set({**_bound_fields.get(), **self.fields}))
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        _bound_fields.reset(self._tokens.pop())


def log_performance(func):
    """
    Time a function or coroutine function.

    Success is logged at DEBUG with ``duration_seconds``; a failure is
    logged at ERROR with the exception type and re-raised.
    """
    logger = get_logger(func.__module__)
    operation = func.__qualname__

    def finished(started: float, error: Optional[BaseException] = None) -> None:
        fields: dict[str, Any] = {"operation": operation, "duration_seconds": round(time.perf_counter() - started, 4)}
        if error is None:
            logger.debug(f"{operation} finished", extra=fields)
        else:
            fields["error_type"] = type(error).__name__
            logger.error(f"{operation} failed: {error}", extra=fields)

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def timed_coroutine(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                finished(started, e)
                raise
            finished(started)
            return result

        return timed_coroutine

    @functools.wraps(func)
    def timed(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            finished(started, e)
            raise
        finished(started)
        return result

    return timed
