"""Log output for the WellMesh service: JSON lines in production, plain text in debug."""

import json
import logging
import sys
from typing import Literal

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

# Third-party loggers that would otherwise log every request
NOISY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """Send every log record to stdout through a single root handler.

    Args:
        level: Root log level name, e.g. ``INFO``.
        format_type: ``structured`` for JSON lines, ``dev`` for plain text.
    """
    level = level.upper()
    handler = logging.StreamHandler(sys.stdout)
    if format_type == "structured":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL echo only when debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if level == "DEBUG" else logging.WARNING
    )

    logging.getLogger("wellmesh").info(f"Logging configured: level={level}, format={format_type}")
