# agenda/core/logging.py
from __future__ import annotations

import logging.config

from agenda.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure root + uvicorn loggers once at start-up.
    Modules just use logging.getLogger(__name__).
    """
    level = (level or settings.LOG_LEVEL).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": {
                # SQL echo is controlled by DB_ECHO, keep the engine quiet otherwise
                "sqlalchemy.engine": {"level": "WARNING"},
                "uvicorn.access": {"level": level},
            },
        }
    )
