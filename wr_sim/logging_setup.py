"""Logging setup for the watering robot simulator."""
from __future__ import annotations

import json
import logging
import pathlib
import sys
from typing import Any, Optional

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str | pathlib.Path] = None,
) -> None:
    """Configure root logging with a deterministic format.

    Repeated calls replace the handlers installed by earlier calls, so the CLI
    and tests can reconfigure freely.
    """
    level_value = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_path = pathlib.Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter: logging.Formatter
    if json_format:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level_value, handlers=handlers, force=True)
    # werkzeug logs every request at INFO; keep it quieter unless debugging.
    if level_value > logging.DEBUG:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)


class _JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt=_DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True)
