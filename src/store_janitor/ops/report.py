"""
Run reports.

Each janitor operation returns a report dataclass that serializes to a plain
dict for logging or machine consumption, and can be written as JSON to the
configured report directory.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass
class PurgeReport:
    mode: str
    dry_run: bool = False
    preserved: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "summary": {
                "preserved": len(self.preserved),
                "deleted": len(self.deleted),
                "failed": len(self.failed),
            },
            "preserved": list(self.preserved),
            "deleted": list(self.deleted),
            "failed": [{"graph": iri, "reason": reason} for iri, reason in self.failed],
        }


@dataclass
class GraphInventory:
    total_graphs: int
    total_triples: int
    by_category: Dict[str, Dict[str, int]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChunkMismatch:
    """A chunk whose back-references disagree with its owning document."""

    document_id: str
    chunk_id: str
    field: str
    expected: Optional[str]
    actual: Optional[str]


@dataclass
class JobAudit:
    job_hashes: int = 0
    scanned: int = 0
    orphaned_ids: List[str] = field(default_factory=list)
    stale_memberships: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_hashes": self.job_hashes,
            "scanned": self.scanned,
            "orphaned_ids": sorted(self.orphaned_ids),
            "stale_memberships": [
                {"set": key, "job_id": job_id} for key, job_id in self.stale_memberships
            ],
            "failed": [{"key": key, "reason": reason} for key, reason in self.failed],
        }


@dataclass
class ReconcileReport:
    dry_run: bool = False
    scanned: int = 0
    orphans_removed: int = 0
    removed_ids: List[str] = field(default_factory=list)
    mismatches: List[ChunkMismatch] = field(default_factory=list)
    documents_without_record: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    def record_removed(self, item_id: str) -> None:
        self.orphans_removed += 1
        self.removed_ids.append(item_id)

    def merge(self, other: "ReconcileReport") -> "ReconcileReport":
        self.scanned += other.scanned
        self.orphans_removed += other.orphans_removed
        self.removed_ids.extend(other.removed_ids)
        self.mismatches.extend(other.mismatches)
        self.documents_without_record.extend(other.documents_without_record)
        self.failed.extend(other.failed)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "summary": {
                "scanned": self.scanned,
                "orphans_removed": self.orphans_removed,
                "mismatches": len(self.mismatches),
                "failed": len(self.failed),
            },
            "removed_ids": list(self.removed_ids),
            "mismatches": [asdict(m) for m in self.mismatches],
            "documents_without_record": list(self.documents_without_record),
            "failed": [{"item": item, "reason": reason} for item, reason in self.failed],
        }


@dataclass
class KeyPurgeReport:
    dry_run: bool = False
    deleted_by_pattern: Dict[str, int] = field(default_factory=dict)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted_by_pattern.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "total_deleted": self.total_deleted,
            "deleted_by_pattern": dict(self.deleted_by_pattern),
            "failed": [{"pattern": p, "reason": reason} for p, reason in self.failed],
        }


Report = Union[PurgeReport, GraphInventory, JobAudit, ReconcileReport, KeyPurgeReport]


def write_report(report: Report, report_dir: Union[str, Path], command: str) -> Path:
    """
    Write a report as JSON.

    Returns:
        Path: Path to generated report file
    """
    directory = Path(report_dir)
    directory.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    report_file = directory / f"{command}-report-{timestamp}.json"

    payload = {
        "command": command,
        "timestamp": datetime.now().isoformat(),
        "report": report.to_dict(),
    }
    with open(report_file, "w") as f:
        json.dump(payload, f, indent=2)

    return report_file
