"""
Structured logging configuration for the crawl planner.
Uses structlog for structured JSON logs in production and more readable logs in development.
"""

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

import config

# Configure standard logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(message)s",
    stream=sys.stdout,
)

# Determine if we should use JSON format (in production) or pretty console output (in development)
USE_JSON_LOGS = config.LOG_FORMAT.lower() in ("json", "structured") or config.ENVIRONMENT == "production"

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        # Use JSON in production, pretty console output in development
        structlog.processors.JSONRenderer() if USE_JSON_LOGS else structlog.dev.ConsoleRenderer(colors=False),
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

# Job ID context var, bound while a plan execution is being driven
job_id_contextvar = contextvars.ContextVar("job_id", default=None)

def get_job_id() -> Optional[str]:
    """Get the current job ID from context."""
    return job_id_contextvar.get()

@contextmanager
def bind_job_id(job_id: str) -> Iterator[None]:
    """Bind a job ID to every log line emitted inside the block."""
    token = job_id_contextvar.set(job_id)
    structlog.contextvars.bind_contextvars(job_id=job_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("job_id")
        job_id_contextvar.reset(token)

# Get a configured logger
def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Get a pre-configured structlog logger."""
    return structlog.get_logger(name)
