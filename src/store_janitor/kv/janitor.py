"""
Secondary-index consistency for the key-value store.

Two record families are reconciled:

- Jobs: a hash per job plus a global set and per-workspace sets of job ids.
  Ids to remove are supplied by the caller (usually from ``audit_jobs``);
  removal deletes the hash first, then the id from every set.
- Documents: a chunk-id set per document. Members that no longer resolve to a
  chunk record are removed from the set. Chunks whose back-references
  disagree with the document are reported and left in place.

Nothing here creates or repairs a primary record. Every removal is idempotent,
so a crash mid-pass leaves at most a transient orphan the next pass removes.
"""

import json
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Set, Tuple

from redis import exceptions as redis_exceptions

from store_janitor.ops.report import (
    ChunkMismatch,
    JobAudit,
    KeyPurgeReport,
    ReconcileReport,
)
from store_janitor.shared.errors import ItemOperationError, StoreConnectionError
from store_janitor.shared.observability import get_logger
from store_janitor.shared.observability.metrics import (
    index_mismatches_total,
    index_orphans_removed_total,
    item_failures_total,
    keys_purged_total,
)
from store_janitor.shared.scanner import KeyScanner, SetMemberScanner

from .keys import DocumentKeyspace, JobKeyspace

logger = get_logger(__name__)

STORE_NAME = "key-value-store"

JSON_TYPES = {"ReJSON-RL", "json"}


@contextmanager
def _connection_guard():
    """Translate lost connections into the fatal StoreConnectionError."""
    try:
        yield
    except redis_exceptions.ConnectionError as e:
        raise StoreConnectionError(STORE_NAME, str(e)) from e


@contextmanager
def _item_guard(item: str):
    """Translate a failed per-item command into ItemOperationError."""
    with _connection_guard():
        try:
            yield
        except (redis_exceptions.ResponseError, redis_exceptions.TimeoutError) as e:
            raise ItemOperationError(item, f"{type(e).__name__}: {e}") from e


class IndexConsistencyJanitor:
    """Detects and removes dangling secondary-index references."""

    def __init__(
        self,
        client,
        jobs: Optional[JobKeyspace] = None,
        documents: Optional[DocumentKeyspace] = None,
        scan_count: int = 200,
        dry_run: bool = False,
    ):
        self.client = client
        self.jobs = jobs or JobKeyspace()
        self.documents = documents or DocumentKeyspace()
        self.scan_count = scan_count
        self.dry_run = dry_run

    def _scan(self, pattern: str) -> KeyScanner:
        return KeyScanner(self.client, pattern, count=self.scan_count)

    def _members(self, key: str) -> SetMemberScanner:
        return SetMemberScanner(self.client, key, count=self.scan_count)

    def _fail(self, report, e: ItemOperationError) -> None:
        report.failed.append((e.item, e.reason))
        item_failures_total.labels(store=STORE_NAME).inc()
        logger.warning("Index item failed", item=e.item, reason=e.reason)

    # Jobs
    def _workspace_sets(self) -> List[str]:
        with _connection_guard():
            keys = [
                key
                for key in self._scan(self.jobs.workspace_set_pattern).keys()
                if self.jobs.workspace_from_set_key(key)
            ]
        return list(dict.fromkeys(keys))

    def audit_jobs(self) -> JobAudit:
        """
        Find job ids indexed without a hash, and workspace-set entries whose
        hash names a different workspace.
        """
        audit = JobAudit()
        orphaned: Dict[str, None] = {}
        stale: Dict[Tuple[str, str], None] = {}

        with _connection_guard():
            for key in self._scan(self.jobs.hash_pattern).keys():
                if self.jobs.job_id_from_key(key):
                    audit.job_hashes += 1

            for job_id in self._members(self.jobs.all_set).members():
                audit.scanned += 1
                if not self.client.exists(self.jobs.job_key(job_id)):
                    orphaned[job_id] = None

            for set_key in self._workspace_sets():
                workspace_id = self.jobs.workspace_from_set_key(set_key)
                for job_id in self._members(set_key).members():
                    audit.scanned += 1
                    job_key = self.jobs.job_key(job_id)
                    try:
                        with _item_guard(job_key):
                            if not self.client.exists(job_key):
                                orphaned[job_id] = None
                                continue
                            owner = self.client.hget(
                                job_key, self.jobs.workspace_id_field
                            )
                    except ItemOperationError as e:
                        self._fail(audit, e)
                        continue
                    if owner != workspace_id:
                        stale[(set_key, job_id)] = None

        audit.orphaned_ids = list(orphaned)
        audit.stale_memberships = list(stale)
        logger.info(
            "Job index audit complete",
            job_hashes=audit.job_hashes,
            orphaned=len(audit.orphaned_ids),
            stale_memberships=len(audit.stale_memberships),
            failed=len(audit.failed),
        )
        return audit

    def reconcile_jobs(self, job_ids: Iterable[str]) -> ReconcileReport:
        """
        Remove each job id from primary state and every index.

        The hash is deleted (when present) before the id is removed from the
        global set and from every workspace set; all set removals are issued
        even when the id is not a member.
        """
        report = ReconcileReport(dry_run=self.dry_run)
        workspace_sets = self._workspace_sets()

        for job_id in dict.fromkeys(job_ids):
            report.scanned += 1
            try:
                with _item_guard(self.jobs.job_key(job_id)):
                    removed = self._remove_job(job_id, workspace_sets)
            except ItemOperationError as e:
                self._fail(report, e)
                continue
            if removed:
                report.record_removed(job_id)
                index_orphans_removed_total.labels(family="jobs").inc()
                logger.info(
                    "Job removed from indexes",
                    job_id=job_id,
                    removals=removed,
                    dry_run=self.dry_run,
                )
        return report

    def _remove_job(self, job_id: str, workspace_sets: List[str]) -> int:
        job_key = self.jobs.job_key(job_id)
        index_keys = [self.jobs.all_set, *workspace_sets]

        if self.dry_run:
            removed = 1 if self.client.exists(job_key) else 0
            return removed + sum(
                1 for key in index_keys if self.client.sismember(key, job_id)
            )

        removed = 0
        if self.client.exists(job_key):
            removed += self.client.delete(job_key)
        for key in index_keys:
            removed += self.client.srem(key, job_id)
        return removed

    def remove_stale_memberships(
        self, memberships: Iterable[Tuple[str, str]]
    ) -> ReconcileReport:
        """Drop workspace-set entries whose hash (re-read now) names another workspace."""
        report = ReconcileReport(dry_run=self.dry_run)
        for set_key, job_id in memberships:
            report.scanned += 1
            workspace_id = self.jobs.workspace_from_set_key(set_key)
            try:
                with _item_guard(set_key):
                    owner = self.client.hget(
                        self.jobs.job_key(job_id), self.jobs.workspace_id_field
                    )
                    if owner == workspace_id:
                        continue
                    if self.dry_run:
                        removed = 1 if self.client.sismember(set_key, job_id) else 0
                    else:
                        removed = self.client.srem(set_key, job_id)
            except ItemOperationError as e:
                self._fail(report, e)
                continue
            if removed:
                report.record_removed(job_id)
                index_orphans_removed_total.labels(family="jobs").inc()
                logger.info(
                    "Stale workspace membership removed",
                    job_id=job_id,
                    set=set_key,
                    owner=owner,
                    dry_run=self.dry_run,
                )
        return report

    # Documents / chunks
    def reconcile_documents(self) -> ReconcileReport:
        """Remove unresolved chunk ids from every document's chunk set."""
        report = ReconcileReport(dry_run=self.dry_run)
        visited: Set[str] = set()
        with _connection_guard():
            set_keys = self._scan(self.documents.chunk_set_pattern).keys()
            for set_key in set_keys:
                document_id = self.documents.document_id_from_set_key(set_key)
                if not document_id or document_id in visited:
                    continue
                visited.add(document_id)
                if self.client.type(set_key) != "set":
                    continue
                self._reconcile_document(document_id, set_key, report)
        return report

    def _reconcile_document(
        self, document_id: str, set_key: str, report: ReconcileReport
    ) -> None:
        document_key = self.documents.document_key(document_id)
        document_workspace = None
        try:
            with _item_guard(document_key):
                key_type = self.client.type(document_key)
                if key_type == "none":
                    report.documents_without_record.append(document_id)
                else:
                    document_workspace = self._read_document_workspace(
                        document_key, key_type
                    )
        except ItemOperationError as e:
            self._fail(report, e)

        seen: Set[str] = set()
        for chunk_id in self._members(set_key).members():
            if chunk_id in seen:
                continue
            seen.add(chunk_id)
            report.scanned += 1
            try:
                with _item_guard(self.documents.chunk_key(chunk_id)):
                    back_refs = self._read_chunk(chunk_id)
                    if back_refs is None:
                        if self.dry_run:
                            removed = 1
                        else:
                            removed = self.client.srem(set_key, chunk_id)
            except ItemOperationError as e:
                self._fail(report, e)
                continue

            if back_refs is None:
                if removed:
                    report.record_removed(chunk_id)
                    index_orphans_removed_total.labels(family="chunks").inc()
                    logger.info(
                        "Orphaned chunk reference removed",
                        document_id=document_id,
                        chunk_id=chunk_id,
                        dry_run=self.dry_run,
                    )
                continue

            owner = back_refs.get("document_id")
            if owner and owner != document_id:
                self._mismatch(
                    report,
                    document_id,
                    chunk_id,
                    self.documents.document_id_field,
                    document_id,
                    owner,
                )
            if (
                document_workspace
                and back_refs.get("workspace_id")
                and back_refs["workspace_id"] != document_workspace
            ):
                self._mismatch(
                    report,
                    document_id,
                    chunk_id,
                    self.documents.workspace_id_field,
                    document_workspace,
                    back_refs["workspace_id"],
                )

    def _mismatch(
        self,
        report: ReconcileReport,
        document_id: str,
        chunk_id: str,
        field: str,
        expected: Optional[str],
        actual: Optional[str],
    ) -> None:
        report.mismatches.append(
            ChunkMismatch(
                document_id=document_id,
                chunk_id=chunk_id,
                field=field,
                expected=expected,
                actual=actual,
            )
        )
        index_mismatches_total.labels(family="chunks").inc()
        logger.warning(
            "Chunk back-reference mismatch",
            document_id=document_id,
            chunk_id=chunk_id,
            field=field,
            expected=expected,
            actual=actual,
        )

    def _read_document_workspace(self, key: str, key_type: str) -> Optional[str]:
        """
        Read a document's workspace id from a hash, a RedisJSON document or a
        JSON-encoded string value.
        """
        ws_field = self.documents.workspace_id_field
        if key_type == "hash":
            return self.client.hget(key, ws_field)
        if key_type in JSON_TYPES:
            return _first(self.client.json().get(key, f"$.{ws_field}"))
        if key_type == "string":
            try:
                payload = json.loads(self.client.get(key) or "null")
            except ValueError:
                logger.debug("Document record is not JSON", key=key)
                return None
            if isinstance(payload, dict):
                return payload.get(ws_field)
        return None

    def _read_chunk(self, chunk_id: str) -> Optional[Dict[str, Optional[str]]]:
        """
        Read a chunk's back-references (document id, workspace id).

        Returns None when no chunk record exists. Chunks are stored either as
        RedisJSON documents or as hashes.
        """
        key = self.documents.chunk_key(chunk_id)
        key_type = self.client.type(key)
        if key_type == "none":
            return None

        doc_field = self.documents.document_id_field
        ws_field = self.documents.workspace_id_field
        if key_type in JSON_TYPES:
            doc_path, ws_path = f"$.{doc_field}", f"$.{ws_field}"
            values = self.client.json().get(key, doc_path, ws_path) or {}
            return {
                "document_id": _first(values.get(doc_path)),
                "workspace_id": _first(values.get(ws_path)),
            }
        if key_type == "hash":
            owner, workspace = self.client.hmget(key, [doc_field, ws_field])
            return {"document_id": owner, "workspace_id": workspace}
        # Unknown record shape: it exists, so the reference is not dangling.
        return {}

    # Retired key families
    def purge_key_patterns(self, patterns: Iterable[str]) -> KeyPurgeReport:
        """Scan-and-delete every key matching each pattern."""
        report = KeyPurgeReport(dry_run=self.dry_run)
        for pattern in dict.fromkeys(patterns):
            deleted = 0
            try:
                with _item_guard(pattern):
                    for batch in self._scan(pattern):
                        if self.dry_run:
                            deleted += len(batch)
                        else:
                            deleted += self.client.delete(*batch)
            except ItemOperationError as e:
                report.failed.append((e.item, e.reason))
                item_failures_total.labels(store=STORE_NAME).inc()
                logger.warning("Key purge failed", pattern=pattern, reason=e.reason)
            report.deleted_by_pattern[pattern] = deleted
            if deleted and not self.dry_run:
                keys_purged_total.labels(pattern=pattern).inc(deleted)
            logger.info(
                "Key pattern purged",
                pattern=pattern,
                deleted=deleted,
                dry_run=self.dry_run,
            )
        return report

    # Full pass
    def reconcile(
        self,
        job_ids: Optional[Iterable[str]] = None,
        include_jobs: bool = True,
        include_documents: bool = True,
    ) -> ReconcileReport:
        """
        Run one reconciliation pass.

        Args:
            job_ids: Job ids to remove. When omitted, the ids come from a fresh
                ``audit_jobs`` pass and stale workspace memberships are removed
                as well.
            include_jobs: Reconcile the job family
            include_documents: Reconcile document chunk sets

        Returns:
            ReconcileReport aggregated over every family processed

        Raises:
            StoreConnectionError: If the key-value store cannot be reached
        """
        report = ReconcileReport(dry_run=self.dry_run)
        if include_jobs:
            if job_ids is None:
                audit = self.audit_jobs()
                stale = self.remove_stale_memberships(audit.stale_memberships)
                removal = self.reconcile_jobs(audit.orphaned_ids)
                # Both follow-up passes revisit entries the audit already counted
                stale.scanned = removal.scanned = 0
                report.scanned += audit.scanned
                report.failed.extend(audit.failed)
                report.merge(stale)
                report.merge(removal)
            else:
                report.merge(self.reconcile_jobs(job_ids))
        if include_documents:
            report.merge(self.reconcile_documents())

        logger.info(
            "Reconciliation complete",
            scanned=report.scanned,
            orphans_removed=report.orphans_removed,
            mismatches=len(report.mismatches),
            failed=len(report.failed),
            dry_run=self.dry_run,
        )
        return report


def _first(values) -> Optional[str]:
    if isinstance(values, list):
        return values[0] if values else None
    return values
