from __future__ import annotations

import copy
import logging
from logging.config import dictConfig

_DICT_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s:%(name)s:%(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": "WARNING", "handlers": ["console"]},
    "loggers": {
        "assured": {"level": "INFO"},
        "httpx": {"level": "WARNING"},
    },
}


def configure_logging(level: str = "INFO") -> None:
    """
    Install a stdout handler once. Does nothing when the root logger already
    has handlers (e.g. behave --logcapture or pytest's caplog).
    """
    root = logging.getLogger()
    if root.handlers:
        return
    config = copy.deepcopy(_DICT_CONFIG)
    config["loggers"]["assured"]["level"] = level.upper()
    dictConfig(config)
