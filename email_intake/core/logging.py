"""
Structured logging with structlog.

Every module logs through get_logger(__name__) with snake_case event names
and key/value fields. Per-record context (email_id) is bound with
bind_context for the duration of one record's processing, so all lines the
orchestrator, LLM client and delivery gateway emit for it carry the id.
"""

import logging
import sys

import structlog

from email_intake.config import settings

SERVICE_NAME = "email_intake"

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default", "apscheduler.scheduler")


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root logger once at startup.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (default: settings.log_level)
        json_output: JSON lines for production, colored console output otherwise
            (default: settings.json_logs)
    """
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    if json_output is None:
        json_output = settings.json_logs

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for a module, usually get_logger(__name__)."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind key/value pairs to every log line emitted by the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all task-bound logging context."""
    structlog.contextvars.clear_contextvars()
