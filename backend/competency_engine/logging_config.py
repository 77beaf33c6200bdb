import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_DEBUG_FLAGS = {
    "COMPETENCY_DEBUG_SQL": ("sqlalchemy.engine",),
    "COMPETENCY_DEBUG_SYNC": ("competency_engine.sync", "competency_engine.cache"),
    "COMPETENCY_DEBUG_HTTP": ("uvicorn.access",),
}


def configure_logging() -> None:
    """Configure process logging based on environment flags."""
    level = os.getenv("COMPETENCY_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("COMPETENCY_TELEMETRY_LOG_LEVEL", level).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "competency.telemetry": {"level": telemetry_level},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    for flag, logger_names in _DEBUG_FLAGS.items():
        if os.getenv(flag, "0") == "1":
            for name in logger_names:
                logging.getLogger(name).setLevel(logging.DEBUG)
