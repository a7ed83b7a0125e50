"""
Bulk named-graph purge.

Enumerates candidate graphs, classifies each one, asks the preservation policy
for a decision and issues one independent delete per graph marked for
removal. A failed delete is recorded and the pass continues; only an
unreachable store aborts the run. Deleting an absent graph counts as success,
so a purge can be re-run after any partial failure.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from store_janitor.ops.report import GraphInventory, PurgeReport
from store_janitor.shared.errors import ItemOperationError
from store_janitor.shared.observability import get_logger
from store_janitor.shared.observability.metrics import (
    graph_purge_outcomes_total,
    item_failures_total,
)

from .classifier import GraphScope, classify, summarize
from .client import GraphStoreClient
from .policy import PreservationPolicy, PurgeMode, Unit
from .records import NamedGraph
from .requests import is_queryable_iri

logger = get_logger(__name__)

UNQUERYABLE_REASON = "graph IRI cannot be used in a SPARQL query"


class BulkGraphPurger:
    """Drives classification + policy over the store's named graphs."""

    def __init__(
        self,
        client: GraphStoreClient,
        page_size: int = 500,
        max_workers: int = 1,
        denylist: Optional[Iterable[str]] = None,
        placeholder_markers: Optional[Iterable[str]] = None,
        dangling_scope: str = "global",
    ):
        self.client = client
        self.page_size = page_size
        self.max_workers = max(1, max_workers)
        self.denylist = list(denylist) if denylist is not None else None
        self.placeholder_markers = (
            list(placeholder_markers) if placeholder_markers is not None else None
        )
        self.dangling_scope = dangling_scope

    def inventory(self) -> GraphInventory:
        """Count graphs and triples per category without changing anything."""
        graphs: List[NamedGraph] = []
        for batch in self.client.list_graphs(page_size=self.page_size):
            graphs.extend(batch)
        return GraphInventory(
            total_graphs=len(graphs),
            total_triples=sum(g.triple_count for g in graphs),
            by_category=summarize(graphs),
        )

    def purge(
        self,
        mode: Union[PurgeMode, str],
        scope_filter: Optional[GraphScope] = None,
        dry_run: bool = False,
    ) -> PurgeReport:
        """
        Run one purge pass.

        Args:
            mode: data-only, workspace-reset or dangling-cleanup
            scope_filter: Target tenant/workspace; required for workspace-reset,
                not accepted for data-only,
                narrows the ontology listing for dangling-cleanup
            dry_run: Classify and report without deleting

        Returns:
            PurgeReport with preserved, deleted and failed graph IRIs

        Raises:
            ConfigurationError: If the mode/scope combination is invalid
            StoreConnectionError: If the graph store cannot be reached
        """
        policy = PreservationPolicy(
            mode,
            target=scope_filter,
            denylist=self.denylist,
            placeholder_markers=self.placeholder_markers,
        )
        report = PurgeReport(mode=policy.mode.value, dry_run=dry_run)
        log = logger.bind(mode=policy.mode.value, dry_run=dry_run)
        log.info("Graph purge starting")

        seen: Set[str] = set()
        for batch, unqueryable in self._candidates(policy.mode, scope_filter):
            for iri in unqueryable:
                self._record(iri, UNQUERYABLE_REASON, report, log)

            # A graph may carry several ontology records; any match dooms it
            grouped: Dict[str, List[Unit]] = {}
            for unit in batch:
                if unit.iri not in seen:
                    grouped.setdefault(unit.iri, []).append(unit)

            doomed: List[str] = []
            for iri, units in grouped.items():
                seen.add(iri)
                category = classify(iri)
                if any(policy.should_delete(unit, category) for unit in units):
                    doomed.append(iri)
                else:
                    report.preserved.append(iri)
                    graph_purge_outcomes_total.labels(
                        mode=report.mode, outcome="preserved"
                    ).inc()
                    log.debug("Graph preserved", graph=iri, category=category.value)

            if dry_run:
                report.deleted.extend(doomed)
                for iri in doomed:
                    log.info("Would delete graph", graph=iri)
                continue
            self._delete_all(doomed, report, log)

        log.info(
            "Graph purge complete",
            preserved=len(report.preserved),
            deleted=len(report.deleted),
            failed=len(report.failed),
        )
        return report

    def _candidates(
        self, mode: PurgeMode, scope_filter: Optional[GraphScope]
    ) -> Iterator[Tuple[List[Unit], List[str]]]:
        """Yields ``(units, unqueryable graph IRIs)`` per listing page."""
        if mode != PurgeMode.DANGLING_CLEANUP:
            for graphs in self.client.list_graphs(page_size=self.page_size):
                yield graphs, []
            return

        pager = self.client.list_ontology_graphs(
            scope=self.dangling_scope,
            tenant_id=scope_filter.tenant_id if scope_filter else None,
            workspace_id=scope_filter.workspace_id if scope_filter else None,
            page_size=self.page_size,
        )
        for graph_iris in pager:
            queryable = [iri for iri in graph_iris if is_queryable_iri(iri)]
            unqueryable = [iri for iri in graph_iris if not is_queryable_iri(iri)]
            records = self.client.ontology_records(queryable) if queryable else []
            yield records, unqueryable

    def _delete_all(self, iris: List[str], report: PurgeReport, log) -> None:
        if not iris:
            return
        if self.max_workers == 1 or len(iris) == 1:
            for iri in iris:
                self._record(iri, self._delete_one(iri), report, log)
            return
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(self._delete_one, iris))
        for iri, outcome in zip(iris, outcomes):
            self._record(iri, outcome, report, log)

    def _delete_one(self, iri: str) -> Optional[str]:
        """Returns None on success, otherwise the failure reason."""
        try:
            self.client.delete_graph(iri)
        except ItemOperationError as e:
            return e.reason
        return None

    @staticmethod
    def _record(iri: str, failure: Optional[str], report: PurgeReport, log) -> None:
        if failure is None:
            report.deleted.append(iri)
            graph_purge_outcomes_total.labels(mode=report.mode, outcome="deleted").inc()
            log.info("Graph deleted", graph=iri)
        else:
            report.failed.append((iri, failure))
            graph_purge_outcomes_total.labels(mode=report.mode, outcome="failed").inc()
            item_failures_total.labels(store="graph-store").inc()
            log.warning("Graph delete failed", graph=iri, reason=failure)
