import logging
import os
import sys
from typing import Optional

from opentelemetry import trace

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [trace=%(trace_id)s span=%(span_id)s] - %(message)s"

# Libraries that log every request or statement at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class TraceIdFilter(logging.Filter):
    """Stamp each record with the active OpenTelemetry trace and span ids (``-`` outside a span)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            record.trace_id = format(ctx.trace_id, "032x")
            record.span_id = format(ctx.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        return True


class SafeFormatter(logging.Formatter):
    """Formatter for records that reached the handler without passing TraceIdFilter."""

    def format(self, record):
        record.__dict__.setdefault("trace_id", "-")
        record.__dict__.setdefault("span_id", "-")
        return super().format(record)


def configure_logging(level: Optional[str] = None):
    """
    Route all logging to stdout with trace correlation.

    LOG_LEVEL sets the root level (default INFO). SQL_ECHO=true logs every
    statement, which is the quickest way to watch the compare-and-set UPDATEs.
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SafeFormatter(LOG_FORMAT))
    handler.addFilter(TraceIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    sql_echo = os.getenv("SQL_ECHO", "").lower() in ("1", "true", "yes")
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if sql_echo else logging.WARNING)
