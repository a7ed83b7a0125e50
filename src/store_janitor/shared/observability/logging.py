# Structured logging scoped to one janitor run

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Every event emitted during a run carries the same run id
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_run_id() -> str:
    """Get the current run id, starting a new run if none is active"""
    run_id = run_id_ctx.get()
    if run_id is None:
        run_id = uuid.uuid4().hex
        run_id_ctx.set(run_id)
    return run_id


def start_run(command: str, **fields: Any) -> str:
    """
    Begin a janitor run: assign a fresh run id and bind run-wide fields.

    Args:
        command: CLI command being executed
        **fields: Extra fields attached to every event of the run
            (for example ``dry_run``)

    Returns:
        The new run id
    """
    run_id = uuid.uuid4().hex
    run_id_ctx.set(run_id)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command, **fields)
    return run_id


def end_run() -> None:
    run_id_ctx.set(None)
    structlog.contextvars.clear_contextvars()


def add_run_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    run_id = run_id_ctx.get()
    if run_id:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Setup structured JSON logging on stderr.

    stdout is reserved for the run report, so log lines never mix with it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            unknown names fall back to INFO
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_run_id,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
