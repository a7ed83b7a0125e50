# Prometheus metrics for janitor runs

from pathlib import Path
from typing import Union

from prometheus_client import REGISTRY, Counter, write_to_textfile

from .logging import get_logger

logger = get_logger(__name__)

# ===== Graph purge metrics =====
graph_purge_outcomes_total = Counter(
    "janitor_graph_purge_outcomes_total",
    "Named graphs processed by the purger",
    ["mode", "outcome"],
)

# ===== Key-value reconciliation metrics =====
index_orphans_removed_total = Counter(
    "janitor_index_orphans_removed_total",
    "Dangling secondary-index references removed",
    ["family"],
)

index_mismatches_total = Counter(
    "janitor_index_mismatches_total",
    "Back-reference mismatches reported (never auto-repaired)",
    ["family"],
)

keys_purged_total = Counter(
    "janitor_keys_purged_total",
    "Keys deleted by pattern purge",
    ["pattern"],
)

# ===== Failures =====
item_failures_total = Counter(
    "janitor_item_failures_total",
    "Per-item delete/removal failures",
    ["store"],
)


def write_metrics(path: Union[str, Path]) -> None:
    """Write the default registry to a node-exporter textfile."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(target), REGISTRY)
    logger.info("Metrics written", path=str(target))
