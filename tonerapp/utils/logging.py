"""Application logging: stdout plus a rotating file, tagged per request."""

from __future__ import annotations

import logging
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, has_request_context, request

LOG_FILE_NAME = "toner_stock.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [req=%(request_id)s user=%(username)s] %(name)s: %(message)s"


class RequestContextFilter(logging.Filter):
    """Stamp records with the request id and the logged-in username."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = "-"
        record.username = "-"
        if has_request_context():
            record.request_id = getattr(g, "request_id", None) or "-"
            # Only a user Flask-Login already loaded; loading one here would
            # query the database from inside a log call.
            user = g.get("_login_user")
            if user is not None and user.is_authenticated:
                record.username = user.username
        return True


def assign_request_id() -> None:
    incoming = (request.headers.get("X-Request-ID") or "").strip()
    g.request_id = incoming[:64] or uuid.uuid4().hex[:16]


def _attach(logger: logging.Logger, handler: logging.Handler, context_filter: logging.Filter) -> None:
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(context_filter)
    logger.addHandler(handler)


def configure_logging(app: Flask) -> Path:
    log_dir = Path(app.config.get("LOG_DIR") or Path(app.root_path).parent / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    context_filter = RequestContextFilter()

    # Reloads and repeated factory calls must not duplicate output.
    if not any(type(handler) is logging.StreamHandler for handler in root_logger.handlers):
        _attach(root_logger, logging.StreamHandler(sys.stdout), context_filter)

    already_writing = any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == str(log_path)
        for handler in root_logger.handlers
    )
    if not already_writing:
        _attach(
            root_logger,
            RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5),
            context_filter,
        )

    for handler in app.logger.handlers:
        handler.addFilter(context_filter)

    app.logger.setLevel(logging.INFO)
    for name in ("werkzeug", "gunicorn.error", "gunicorn.access"):
        logging.getLogger(name).setLevel(logging.INFO)

    app.logger.info("Logging to %s", log_path)
    return log_path
