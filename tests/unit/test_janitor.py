"""
Tests for IndexConsistencyJanitor over the in-memory Redis fake.

Job family: hash ``ontology_job:<id>`` indexed by ``ontology_jobs:all`` and
``ontology_jobs:workspace:<ws>``. Document family: ``doc:<id>:chunks`` sets
pointing at ``chunk:<id>`` records.
"""

import pytest
from redis import exceptions as redis_exceptions

from store_janitor.kv.janitor import IndexConsistencyJanitor
from store_janitor.kv.keys import DocumentKeyspace, JobKeyspace, escape_glob
from store_janitor.shared.errors import StoreConnectionError


@pytest.fixture
def jobs_store(fake_redis):
    """Job 41 is healthy, 42 lost its hash, 43 sits in the wrong workspace set."""
    fake_redis.hset("ontology_job:41", mapping={"workspace_id": "w1"})
    fake_redis.hset("ontology_job:43", mapping={"workspace_id": "w1"})
    fake_redis.hset("ontology_job:file:abc", mapping={"job_id": "41"})
    fake_redis.sadd("ontology_jobs:all", "41", "42", "43")
    fake_redis.sadd("ontology_jobs:workspace:w1", "41", "42")
    fake_redis.sadd("ontology_jobs:workspace:w2", "43")
    return fake_redis


@pytest.fixture
def chunks_store(fake_redis):
    """Document d1 lists c1..c3; c2 has no record."""
    fake_redis.hset("doc:d1", mapping={"workspace_id": "w1"})
    fake_redis.sadd("doc:d1:chunks", "c1", "c2", "c3")
    fake_redis.add_json("chunk:c1", documentId="d1", workspace_id="w1")
    fake_redis.add_json("chunk:c3", documentId="d1", workspace_id="w1")
    return fake_redis


class TestKeyspaces:
    def test_job_keys(self):
        jobs = JobKeyspace()
        assert jobs.job_key("42") == "ontology_job:42"
        assert jobs.all_set == "ontology_jobs:all"
        assert jobs.workspace_set("w1") == "ontology_jobs:workspace:w1"
        assert jobs.job_id_from_key("ontology_job:42") == "42"
        assert jobs.job_id_from_key("ontology_job:file:abc") is None
        assert jobs.workspace_from_set_key("ontology_jobs:workspace:w1") == "w1"
        assert jobs.workspace_from_set_key("ontology_jobs:all") is None

    def test_document_keys(self):
        docs = DocumentKeyspace()
        assert docs.chunk_set_key("d1") == "doc:d1:chunks"
        assert docs.chunk_set_pattern == "doc:*:chunks"
        assert docs.document_id_from_set_key("doc:d1:chunks") == "d1"
        assert docs.document_id_from_set_key("doc:d1") is None

    def test_escape_glob(self):
        assert escape_glob("a*b?[c]") == "a\\*b\\?\\[c\\]"


class TestJobAudit:
    def test_finds_orphans_and_stale_memberships(self, jobs_store):
        audit = IndexConsistencyJanitor(jobs_store).audit_jobs()

        assert audit.job_hashes == 2
        assert audit.orphaned_ids == ["42"]
        assert audit.stale_memberships == [("ontology_jobs:workspace:w2", "43")]
        assert audit.scanned == 6

    def test_audit_is_read_only(self, jobs_store):
        IndexConsistencyJanitor(jobs_store).audit_jobs()
        assert jobs_store.calls_for("srem") == []
        assert jobs_store.calls_for("delete") == []

    def test_unreadable_job_record_recorded_and_audit_continues(self, jobs_store):
        jobs_store.errors[("hget", "ontology_job:43")] = redis_exceptions.ResponseError(
            "WRONGTYPE Operation against a key holding the wrong kind of value"
        )

        audit = IndexConsistencyJanitor(jobs_store).audit_jobs()

        assert [item for item, _ in audit.failed] == ["ontology_job:43"]
        assert audit.orphaned_ids == ["42"]
        assert audit.stale_memberships == []
        assert audit.to_dict()["failed"][0]["key"] == "ontology_job:43"


class TestJobReconcile:
    def test_missing_hash_removed_from_every_index(self, jobs_store):
        """Job 42 leaves both sets without a DEL on its (absent) hash."""
        report = IndexConsistencyJanitor(jobs_store).reconcile_jobs(["42"])

        assert report.orphans_removed == 1
        assert report.removed_ids == ["42"]
        assert "ontology_job:42" not in jobs_store.calls_for("delete")
        assert "42" not in jobs_store.data["ontology_jobs:all"]
        assert "42" not in jobs_store.data["ontology_jobs:workspace:w1"]

    def test_cascade_deletes_hash_then_every_set(self, jobs_store):
        report = IndexConsistencyJanitor(jobs_store).reconcile_jobs(["41"])

        assert report.removed_ids == ["41"]
        assert "ontology_job:41" not in jobs_store.data
        for key in ("ontology_jobs:all", "ontology_jobs:workspace:w1"):
            assert "41" not in jobs_store.data[key]
        delete_at = jobs_store.calls.index(("delete", "ontology_job:41"))
        first_srem = next(
            i for i, (name, _) in enumerate(jobs_store.calls) if name == "srem"
        )
        assert delete_at < first_srem

    def test_srem_issued_for_every_workspace_set(self, jobs_store):
        IndexConsistencyJanitor(jobs_store).reconcile_jobs(["42"])
        assert set(jobs_store.calls_for("srem")) == {
            "ontology_jobs:all",
            "ontology_jobs:workspace:w1",
            "ontology_jobs:workspace:w2",
        }

    def test_duplicate_ids_processed_once(self, jobs_store):
        report = IndexConsistencyJanitor(jobs_store).reconcile_jobs(["42", "42"])
        assert report.scanned == 1
        assert report.orphans_removed == 1

    def test_dry_run_mutates_nothing(self, jobs_store):
        report = IndexConsistencyJanitor(jobs_store, dry_run=True).reconcile_jobs(
            ["42"]
        )
        assert report.orphans_removed == 1
        assert "42" in jobs_store.data["ontology_jobs:all"]
        assert jobs_store.calls_for("srem") == []

    def test_item_failure_recorded_and_pass_continues(self, jobs_store):
        jobs_store.errors[("exists", "ontology_job:42")] = redis_exceptions.ResponseError(
            "WRONGTYPE"
        )

        report = IndexConsistencyJanitor(jobs_store).reconcile_jobs(["42", "43"])

        assert [item for item, _ in report.failed] == ["ontology_job:42"]
        assert report.removed_ids == ["43"]

    def test_connection_loss_is_fatal(self, jobs_store):
        jobs_store.errors["srem"] = redis_exceptions.ConnectionError("reset")
        with pytest.raises(StoreConnectionError) as exc:
            IndexConsistencyJanitor(jobs_store).reconcile_jobs(["42"])
        assert exc.value.store == "key-value-store"

    def test_full_pass_then_idempotent(self, jobs_store):
        janitor = IndexConsistencyJanitor(jobs_store)

        first = janitor.reconcile(include_documents=False)
        second = janitor.reconcile(include_documents=False)

        assert sorted(first.removed_ids) == ["42", "43"]
        assert "43" in jobs_store.data["ontology_jobs:all"]
        assert "ontology_jobs:workspace:w2" not in jobs_store.data
        assert second.orphans_removed == 0
        assert second.failed == []

    def test_full_pass_counts_each_index_entry_once(self, jobs_store):
        """Orphans and stale entries found by the audit are not counted again."""
        report = IndexConsistencyJanitor(jobs_store).reconcile(include_documents=False)

        assert report.scanned == 6
        assert report.orphans_removed == 2

    def test_stale_membership_rechecked_before_removal(self, jobs_store):
        janitor = IndexConsistencyJanitor(jobs_store)
        audit = janitor.audit_jobs()
        jobs_store.hset("ontology_job:43", mapping={"workspace_id": "w2"})

        report = janitor.remove_stale_memberships(audit.stale_memberships)

        assert report.orphans_removed == 0
        assert "43" in jobs_store.data["ontology_jobs:workspace:w2"]


class TestChunkReconcile:
    def test_missing_chunk_removed(self, chunks_store):
        """Only c2 leaves the set; c1 and c3 stay."""
        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        assert report.removed_ids == ["c2"]
        assert chunks_store.data["doc:d1:chunks"] == {"c1", "c3"}
        assert report.mismatches == []
        assert report.scanned == 3

    def test_second_pass_is_empty(self, chunks_store):
        janitor = IndexConsistencyJanitor(chunks_store)
        janitor.reconcile_documents()
        again = janitor.reconcile_documents()
        assert again.orphans_removed == 0
        assert chunks_store.data["doc:d1:chunks"] == {"c1", "c3"}

    def test_mismatch_reported_not_repaired(self, chunks_store):
        chunks_store.add_json("chunk:c3", documentId="d9", workspace_id="w2")

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        fields = {(m.chunk_id, m.field, m.expected, m.actual) for m in report.mismatches}
        assert fields == {
            ("c3", "documentId", "d1", "d9"),
            ("c3", "workspace_id", "w1", "w2"),
        }
        assert "c3" in chunks_store.data["doc:d1:chunks"]
        assert chunks_store.data["chunk:c3"]["documentId"] == "d9"

    def test_hash_chunks_supported(self, chunks_store):
        chunks_store.delete("chunk:c1")
        chunks_store.hset("chunk:c1", mapping={"documentId": "d2"})

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        assert [(m.chunk_id, m.actual) for m in report.mismatches] == [("c1", "d2")]

    def test_unknown_record_type_counts_as_present(self, chunks_store):
        chunks_store.set("chunk:c2", "raw")
        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()
        assert report.orphans_removed == 0

    def test_json_string_document_workspace(self, chunks_store):
        chunks_store.delete("doc:d1")
        chunks_store.set("doc:d1", '{"workspace_id": "w2", "title": "Resume"}')

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        fields = {(m.chunk_id, m.field, m.expected, m.actual) for m in report.mismatches}
        assert fields == {
            ("c1", "workspace_id", "w2", "w1"),
            ("c3", "workspace_id", "w2", "w1"),
        }
        assert report.documents_without_record == []

    def test_redis_json_document_workspace(self, chunks_store):
        chunks_store.delete("doc:d1")
        chunks_store.add_json("doc:d1", workspace_id="w2")

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        assert sorted(m.chunk_id for m in report.mismatches) == ["c1", "c3"]

    def test_non_json_string_document_has_no_workspace(self, chunks_store):
        chunks_store.delete("doc:d1")
        chunks_store.set("doc:d1", "legacy")

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        assert report.mismatches == []
        assert report.removed_ids == ["c2"]

    def test_document_without_record(self, chunks_store):
        chunks_store.delete("doc:d1")
        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()
        assert report.documents_without_record == ["d1"]
        assert report.removed_ids == ["c2"]

    def test_dry_run(self, chunks_store):
        report = IndexConsistencyJanitor(chunks_store, dry_run=True).reconcile_documents()
        assert report.removed_ids == ["c2"]
        assert chunks_store.data["doc:d1:chunks"] == {"c1", "c2", "c3"}

    def test_chunk_read_failure_isolated(self, chunks_store):
        chunks_store.sadd("doc:d2:chunks", "c9")
        chunks_store.errors[("type", "chunk:c1")] = redis_exceptions.ResponseError(
            "busy"
        )

        report = IndexConsistencyJanitor(chunks_store).reconcile_documents()

        assert [item for item, _ in report.failed] == ["chunk:c1"]
        assert sorted(report.removed_ids) == ["c2", "c9"]


class TestKeyPatternPurge:
    def test_deletes_matching_keys(self, fake_redis):
        for i in range(5):
            fake_redis.set(f"ontology:pack:{i}", "x")
        fake_redis.set("ontology:packs", "x")
        fake_redis.set("ontology_job:1", "x")

        report = IndexConsistencyJanitor(fake_redis, scan_count=2).purge_key_patterns(
            ["ontology:pack:*", "ontology:packs", "ontology:missing:*"]
        )

        assert report.deleted_by_pattern == {
            "ontology:pack:*": 5,
            "ontology:packs": 1,
            "ontology:missing:*": 0,
        }
        assert report.total_deleted == 6
        assert list(fake_redis.data) == ["ontology_job:1"]

    def test_dry_run_counts_only(self, fake_redis):
        fake_redis.set("ontology:pack:1", "x")
        report = IndexConsistencyJanitor(fake_redis, dry_run=True).purge_key_patterns(
            ["ontology:pack:*"]
        )
        assert report.total_deleted == 1
        assert "ontology:pack:1" in fake_redis.data
