"""structlog setup shared by the API process and the internal jobs."""

import logging
from typing import Optional

import structlog

from procurement.config import settings


def add_app_context(logger, method_name, event_dict):
    event_dict.setdefault("app", settings.APP_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def build_processors(json_logs: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        # The console renderer prints tracebacks itself
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def resolve_level(level: Optional[str] = None) -> int:
    value = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    log_level = resolve_level(level)
    if json_logs is None:
        json_logs = settings.ENVIRONMENT != "development"
    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # stdlib loggers (uvicorn, tenacity retries, alembic) follow the same level
    logging.basicConfig(level=log_level, format="%(message)s")
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
