"""Configure application logging using the Python standard library.

Sets up the root logger with a console handler and a rotating file
handler.  Records are formatted as JSON with the context fields the POS
attaches through ``extra``: ``request_id`` (usually a sale id),
``user_id`` (the cashier) and a free-form ``extra`` dict.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_record["request_id"] = getattr(record, "request_id")
        if hasattr(record, "user_id"):
            log_record["user_id"] = getattr(record, "user_id")
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            # merged at top level, never nested under "extra"
            log_record.update(extra)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(
    log_dir: str | None = None,
    level: int | str | None = None,
    console: bool = True,
) -> None:
    """Configure root logger with JSON formatting and rotating file handler.

    Args:
        log_dir: Directory where log files are written.  Defaults to
            ``$POS_LOG_DIR`` or ``logs``.  Created if it does not exist.
        level: Logging level for the root logger.  Defaults to
            ``$POS_LOG_LEVEL`` or INFO.
        console: Also log to stderr.  The interactive shell turns this off
            so JSON lines do not interleave with its menus.
    """
    log_dir = log_dir or os.environ.get("POS_LOG_DIR", "logs")
    if level is None:
        level = os.environ.get("POS_LOG_LEVEL", "INFO").upper()
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    formatter = JsonFormatter()

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, "pos_app.log"),
        maxBytes=5 * 1024 * 1024,  # 5 MB per log file
        backupCount=3,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
