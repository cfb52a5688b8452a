"""Log output for the case API.

Two renderings are supported: one JSON object per line for deployments that
ship logs to an aggregator, and a plain single-line format for local work.
Both carry the request correlation id when the request middleware supplied
one.

Security Impact:
    - Only the whitelisted context fields below are emitted from ``extra=``
    - Patient fields and master-data names are never passed to loggers
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

# Attributes that callers may attach through ``extra=``; anything else on the
# record is ignored by the JSON renderer.
CONTEXT_FIELDS = (
    "request_id",
    "endpoint",
    "method",
    "status_code",
    "duration_ms",
    "case_id",
    "error_type",
)

# Framework loggers that duplicate what the request middleware already says.
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi")

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"
PLAIN_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object.

    Context attached by the middleware or services is copied verbatim for the
    names in ``CONTEXT_FIELDS`` when present and not None.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RequestIdFilter(logging.Filter):
    """Give every record a ``request_id`` so the plain format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = "-"
        return True


def _quiet(names: Iterable[str]) -> None:
    for name in names:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(use_json: bool = False, log_level: str = "INFO") -> logging.Handler:
    """Install the single stdout handler on the root logger.

    Parameters:
        use_json: Emit JSON lines (``CR_JSON_LOGS``)
        log_level: Root level name (``CR_LOG_LEVEL``); unknown names mean INFO

    Returns:
        The installed handler
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    if use_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    _quiet(QUIET_LOGGERS)
    return handler
