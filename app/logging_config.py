import logging
import logging.config
import sys
from typing import Any, Dict

from .config import get_settings


def setup_logging() -> None:
    settings = get_settings()
    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "simple",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "app": {
                "handlers": ["console"],
                "level": settings.log_level,
                "propagate": False,
            },
        },
    }
    logging.config.dictConfig(logging_config)
