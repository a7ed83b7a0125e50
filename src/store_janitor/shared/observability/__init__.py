# Observability package
from .logging import end_run, get_logger, get_run_id, setup_logging, start_run
from .metrics import write_metrics

__all__ = [
    "get_logger",
    "setup_logging",
    "start_run",
    "end_run",
    "get_run_id",
    "write_metrics",
]
