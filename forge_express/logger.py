"""Structured logging for Forge Express."""

import logging
from dataclasses import dataclass, field
from enum import Enum

import orjson
import structlog


class LogLevel(str, Enum):
    """Log levels accepted by the logger configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LoggerConfig:
    """Logger configuration."""

    debug: bool = False
    app_name: str = field(default="forge_express")
    log_level: LogLevel = field(default=LogLevel.INFO)


def dev_pipeline_renderer(logger, name: str, event_dict: dict) -> str:
    """Render log events in human-readable format with pipe-separated fields."""
    reserved_keys = {"timestamp", "level", "event", "exception"}

    timestamp = event_dict.get("timestamp", "")
    level = event_dict.get("level", LogLevel.INFO.value).upper()
    event = event_dict.get("event", "")

    extra_kwargs = " | ".join(
        f"{k}={v}" for k, v in event_dict.items() if k not in reserved_keys
    )

    line = " | ".join(filter(None, [timestamp, level, event, extra_kwargs]))
    if event_dict.get("exception"):
        line = f"{line}\n{event_dict['exception']}"
    return line


def setup_logging(config: LoggerConfig) -> None:
    """Configure structlog for either development or production output."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.debug:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            dev_pipeline_renderer,
        ]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(serializer=orjson.dumps),
        ]

    level = getattr(logging, LogLevel(config.log_level).value)
    structlog.configure(
        processors=processors,
        logger_factory=(
            structlog.PrintLoggerFactory()
            if config.debug
            else structlog.BytesLoggerFactory()
        ),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


logger = structlog.get_logger("forge_express")
