"""Structured logging configuration.

JSON formatting for production, human-readable formatting for development.
Both the API server and the CLI call setup_logging() once at startup.

Security Impact:
    - Private keys, passwords and tokens are never passed to loggers
    - Reconciliation events go to a dedicated logger so they can be routed
      to an alerting sink independently
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

RECONCILIATION_LOGGER = "consent_gateway.reconciliation"


class StructuredFormatter(logging.Formatter):
    """JSON formatter; `extra_fields` on a record are merged into the output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        for attr in ("request_id", "client_ip", "endpoint", "identity_label"):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        return json.dumps(log_data, default=str)


def setup_logging(use_json: bool = False, log_level: str = "INFO") -> None:
    """Configure the root logger.

    Parameters:
        use_json: Use JSON formatting (for production)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if use_json:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
