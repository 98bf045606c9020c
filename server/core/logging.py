"""Structured logging for the workflow engine.

Every record carries the run context bound with ``run_context`` (workflow,
lead and run ids), so one run can be followed across concurrent branches and
delayed continuations.
"""

import sys
import structlog
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from core.config import Settings


def _handlers(settings: Settings, level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _processors(log_format: str) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors[:0] = [structlog.stdlib.add_logger_name, structlog.processors.TimeStamper(fmt="iso")]
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.insert(0, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
        processors.append(structlog.dev.ConsoleRenderer(
            colors=False,
            pad_event_to=35,
            exception_formatter=structlog.dev.plain_traceback
        ))
    return processors


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging with the configured level and format."""
    level = getattr(logging, settings.log_level)
    # force: the engine may be embedded in a host that already configured logging
    logging.basicConfig(level=level, handlers=_handlers(settings, level), format="%(message)s", force=True)

    structlog.configure(
        processors=_processors(settings.log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def run_context(workflow_id: str, lead_id: str, run_id: Optional[str]) -> Iterator[None]:
    """Bind run identifiers to every log record emitted inside the block."""
    with structlog.contextvars.bound_contextvars(workflow_id=workflow_id, lead_id=lead_id, run_id=run_id):
        yield


def log_node_visit(logger: structlog.BoundLogger, node_id: str, node_type: str,
                   status: str, error: Optional[str] = None, **kwargs) -> None:
    """Log one node visit; failures go out at error level."""
    log_data = {
        "node_id": node_id,
        "node_type": node_type,
        "status": status,
        **kwargs
    }

    if error is not None:
        log_data["error"] = error
        logger.error("Node visit failed", **log_data)
    else:
        logger.info("Node visited", **log_data)


def log_collaborator_call(logger: structlog.BoundLogger, service: str,
                          operation: str, success: bool, **kwargs) -> None:
    """Log calls to external collaborators with standardized format."""
    logger.info(
        "Collaborator call completed",
        service=service,
        operation=operation,
        success=success,
        **kwargs
    )
