"""
Logging Configuration

One stdout handler shared by the application, uvicorn and the quieted
client libraries. Called once from ``create_app``.
"""

import sys
from logging.config import dictConfig


def setup_logging(level: str = "INFO") -> None:
    """
    Configure ``roomrag`` loggers at ``level`` (LOG_LEVEL).

    Format: ``timestamp | level | logger | message``.
    """
    log_level = level.upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                },
            },
            "root": {"level": log_level, "handlers": ["console"]},
            "loggers": {
                "roomrag": {"level": log_level, "handlers": ["console"], "propagate": False},
                # uvicorn.access propagates here
                "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
                # One INFO line per embedding / completion / Ollama request
                "httpx": {"level": "WARNING"},
                # SQL statement logging stays off even at LOG_LEVEL=DEBUG
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
