"""Centralised logging configuration for the API server.

Usage:
    from logging_config import setup_logging, request_id_var, user_id_var

    # At process startup:
    setup_logging("Server")

    # Per request (done by the middleware in main.py and by the MFA endpoint):
    request_id_var.set("5f0c1e2a")
    user_id_var.set("42")

All existing ``logging.getLogger(__name__).info(...)`` calls work unchanged;
the ContextFilter injects request/user context automatically.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path

# ── Context variables (set per request) ────────────────────────────────────

request_id_var: ContextVar[str] = ContextVar("request_id_var", default="")
user_id_var: ContextVar[str] = ContextVar("user_id_var", default="")


# ── Filter: stamps context onto every LogRecord ────────────────────────────

class ContextFilter(logging.Filter):
    """Injects ``role``, ``request_id``, and ``user_id`` onto each record."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.user_id = user_id_var.get("")  # type: ignore[attr-defined]
        return True


# ── Formatter: builds [Role][Req][User][LEVEL] prefix ──────────────────────

class ContextFormatter(logging.Formatter):
    """Produces lines like:

    2026-10-19 14:30:00 [Server][INFO] main:71 - Database ready
    2026-10-19 14:30:01 [Server][Req 5f0c1e2a][User 42][INFO] services.mfa:88 - MFA enabled
    """

    def format(self, record: logging.LogRecord) -> str:
        role = getattr(record, "role", "")
        request_id = getattr(record, "request_id", "")
        user_id = getattr(record, "user_id", "")

        parts = [f"[{role}]"] if role else []
        if request_id:
            parts.append(f"[Req {request_id[:8]}]")
        if user_id:
            parts.append(f"[User {user_id}]")
        parts.append(f"[{record.levelname}]")

        prefix = "".join(parts)
        timestamp = self.formatTime(record, self.datefmt)
        location = f"{record.name}:{record.lineno}"
        message = record.getMessage()

        formatted = f"{timestamp} {prefix} {location} - {message}"
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            formatted += "\n" + record.exc_text
        if record.stack_info:
            formatted += "\n" + record.stack_info
        return formatted


# ── Setup function ─────────────────────────────────────────────────────────

def setup_logging(role: str) -> None:
    """Configure the root logger for *role* (e.g. ``"Server"``).

    - Adds a stderr StreamHandler (always).
    - Adds a RotatingFileHandler when ``settings.LOG_FILE`` is set.
    - Tames noisy third-party loggers.
    - Makes uvicorn loggers propagate through root (when role is Server).

    Safe to call multiple times (idempotent via handler name check).
    """
    from config import settings

    root = logging.getLogger()

    if any(getattr(h, "name", None) == "_devicehub_stream" for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    ctx_filter = ContextFilter(role)
    formatter = ContextFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.name = "_devicehub_stream"
    stream_handler.addFilter(ctx_filter)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.name = "_devicehub_file"
        file_handler.addFilter(ctx_filter)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in ("httpx", "httpcore", "urllib3", "sqlalchemy.engine", "alembic"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if "server" in role.lower():
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
