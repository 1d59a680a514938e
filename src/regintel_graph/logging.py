"""
Structured logging configuration for the RegIntel graph sync engine.

Uses structlog for structured, context-aware logging with:
- JSON output for production
- Pretty console output for development
- Per-phase timing
- Run / environment / entity-type context propagation
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

from .config import get_settings

# Context variables for run-scoped data
_run_id: ContextVar[str | None] = ContextVar('run_id', default=None)
_environment: ContextVar[str | None] = ContextVar('environment', default=None)
_entity_type: ContextVar[str | None] = ContextVar('entity_type', default=None)


def get_run_id() -> str | None:
    """Get the current backfill run ID from context."""
    return _run_id.get()


def get_environment() -> str | None:
    """Get the current target environment from context."""
    return _environment.get()


def get_entity_type() -> str | None:
    """Get the entity type currently being synced from context."""
    return _entity_type.get()


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor that adds context variables to log entries."""
    run_id = get_run_id()
    environment = get_environment()
    entity_type = get_entity_type()

    if run_id:
        event_dict['run_id'] = run_id
    if environment:
        event_dict['environment'] = environment
    if entity_type:
        event_dict['entity_type'] = entity_type

    return event_dict


def configure_logging(
    json_output: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: If True, output JSON logs (for production).
                    Defaults to settings.LOG_JSON.
        log_level: Override log level (defaults to settings.LOG_LEVEL)
    """
    settings = get_settings()
    level = log_level or settings.LOG_LEVEL
    level_num = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = settings.LOG_JSON

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stdout,
        level=level_num,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


@contextmanager
def logging_context(
    run_id: str | None = None,
    environment: str | None = None,
    entity_type: str | None = None,
) -> Generator[None, None, None]:
    """
    Context manager for setting logging context variables.

    Usage:
        with logging_context(run_id="0190...", environment="STAGING"):
            logger.info("backfill.started")  # Includes run_id and environment
    """
    run_token = _run_id.set(run_id) if run_id is not None else None
    env_token = _environment.set(environment) if environment is not None else None
    entity_token = _entity_type.set(entity_type) if entity_type is not None else None

    try:
        yield
    finally:
        if entity_token is not None:
            _entity_type.reset(entity_token)
        if env_token is not None:
            _environment.reset(env_token)
        if run_token is not None:
            _run_id.reset(run_token)


class PhaseTimer:
    """
    Timer for tracking backfill phase durations.

    Usage:
        timer = PhaseTimer()
        with timer.stage("entity_sync"):
            ...
        with timer.stage("relationship_inference"):
            ...
        print(timer.summary())
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.start_time: float = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time a backfill phase."""
        stage_start = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - stage_start) * 1000

    def record(self, name: str, duration_ms: float) -> None:
        """Manually record a phase duration."""
        self.stages[name] = duration_ms

    @property
    def total_ms(self) -> float:
        """Total elapsed time since timer creation in milliseconds."""
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        """Get timing summary as a dictionary."""
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
        }


# Initialize logging on module import (settings decide console vs JSON)
configure_logging()
