"""
Logging setup.

stdlib ``logging`` records and structlog events share the same handlers.
Console output is rendered by structlog's ``ProcessorFormatter``. JSON output
is written by python-json-logger; structlog hands its event dict over as
record attributes, so each line is encoded once.

The service name is bound once at setup. The controller binds the
environment, revision and release id around each release, so every record
written while a release runs carries them.
"""

import logging
import logging.config
from dataclasses import dataclass

import structlog
from pythonjsonlogger import jsonlogger

from .exceptions import ConfigurationError

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_FORMATS = ("json", "console")

SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


@dataclass
class LogConfig:
    service_name: str
    service_version: str = "1.0.0"
    level: str = "INFO"
    format_type: str = "console"
    log_file: str | None = None

    def __post_init__(self):
        self.level = self.level.upper()


class PromoterJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds the bound service and release context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        for key, value in structlog.contextvars.get_contextvars().items():
            log_record.setdefault(key, value)


def _formatter(format_type: str) -> dict:
    if format_type == "json":
        return {
            "()": PromoterJsonFormatter,
            "fmt": "%(asctime)s %(name)s %(levelname)s %(message)s",
        }
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        "foreign_pre_chain": SHARED_PROCESSORS,
    }


def setup_logging(config: LogConfig) -> None:
    """Configure structlog and stdlib logging from ``config``."""
    if config.level not in VALID_LEVELS:
        raise ConfigurationError(f"Invalid log level: {config.level}")
    if config.format_type not in VALID_FORMATS:
        raise ConfigurationError(f"Invalid log format: {config.format_type}")

    if config.format_type == "json":
        # event dict becomes LogRecord extras for the JSON formatter
        handoff = structlog.stdlib.render_to_log_kwargs
    else:
        handoff = structlog.stdlib.ProcessorFormatter.wrap_for_formatter

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            handoff,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "promoter",
            "stream": "ext://sys.stderr",
        },
    }
    if config.log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "promoter",
            "filename": config.log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }

    try:
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {"promoter": _formatter(config.format_type)},
                "handlers": handlers,
                "root": {"handlers": list(handlers), "level": config.level},
            }
        )
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        raise ConfigurationError(f"Failed to configure logging: {e}", cause=e) from e

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=config.service_name, service_version=config.service_version
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for event-style records."""
    return structlog.get_logger(name)
