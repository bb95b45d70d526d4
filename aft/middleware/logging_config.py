"""
Structured logging configuration.

Every record emitted while a request is being served is stamped with the
workflow context of that request:

    request_id      X-Request-ID assigned by the timing middleware
    aft_request_id  the AFT request addressed by the URL, if any
    actor_role      effective role of the calling actor, if identified

Explicit ``extra=`` values win over the stamped ones, so the lifecycle
service can tag records outside a request (CLI, tests) the same way.

- Development: one readable line, context shown as ``[AFT#12 dta]``
- Production: JSON lines (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Workflow context carried on every record
CONTEXT_FIELDS = ("request_id", "aft_request_id", "actor_role")

# Per-call fields, present only when the caller passes them
EVENT_FIELDS = ("event_type", "method", "path", "status", "duration_ms", "remote_addr")


class WorkflowContextFilter(logging.Filter):
    """Copy request-scoped workflow context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        if getattr(record, "aft_request_id", None) is None:
            record.aft_request_id = (request.view_args or {}).get("request_id")
        if getattr(record, "actor_role", None) is None:
            actor = getattr(g, "current_actor", None)
            record.actor_role = actor.effective_role if actor is not None else None
        return True


def _context_tag(record: logging.LogRecord) -> str:
    """``[AFT#12 dta]``-style tag; empty when no workflow context is known."""
    parts = []
    aft_id = getattr(record, "aft_request_id", None)
    if aft_id is not None:
        parts.append(f"AFT#{aft_id}")
    role = getattr(record, "actor_role", None)
    if role:
        parts.append(role)
    return f" [{' '.join(parts)}]" if parts else ""


class JSONFormatter(logging.Formatter):
    """One JSON object per record; workflow context under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = {
            key: getattr(record, key) for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        }
        if context:
            entry["context"] = context
        for key in EVENT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line development format, coloured by level."""

    COLORS = {
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        event = getattr(record, "event_type", None)
        duration = getattr(record, "duration_ms", None)
        line = (
            f"{datetime.now():%H:%M:%S} {color}{record.levelname:<8}{reset}"
            f"{_context_tag(record)} {record.name}: {record.getMessage()}"
        )
        if event:
            line += f" ({event})"
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one root handler for the app.

    JSON unless the app runs in DEBUG or TESTING. LOG_LEVEL overrides the
    default level (DEBUG in dev, INFO in prod).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(WorkflowContextFilter())
    handler.setLevel(level)

    # Cleared first so repeated app creation in tests does not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
