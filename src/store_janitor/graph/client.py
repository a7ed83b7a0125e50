"""
HTTP client for the triple store (GraphDB-style REST API).

Features:
- SPARQL SELECT over the repository endpoint
- Graph store protocol DELETE of named graphs (absent graph == success)
- Keyset-paginated graph and ontology listings
- Connection failures surface as StoreConnectionError; per-graph delete
  failures as ItemOperationError
"""

from typing import Dict, Iterator, List, Optional

import httpx

from store_janitor.shared.errors import ItemOperationError, StoreConnectionError
from store_janitor.shared.observability import get_logger
from store_janitor.shared.scanner import KeysetPager

from .classifier import classify, ontology_id_from_iri, scope_name
from .records import NamedGraph, OntologyRecord
from .requests import (
    GraphDeleteRequest,
    GraphStoreRequest,
    RepositoryListRequest,
    SparqlSelectRequest,
    graph_counts_query,
    is_queryable_iri,
    ontology_graphs_query,
    ontology_metadata_query,
    ontology_scope_filter,
)

logger = get_logger(__name__)

STORE_NAME = "graph-store"


class GraphStoreClient:
    """Thin typed wrapper over one triple-store repository."""

    def __init__(
        self,
        base_url: str,
        repository: str,
        timeout: float = 30.0,
        graph_iri_base: str = "http://purplefabric.ai/graphs",
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.repository = repository
        self.graph_iri_base = graph_iri_base.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=self.base_url, timeout=timeout
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _send(self, request: GraphStoreRequest) -> httpx.Response:
        try:
            return self._client.request(
                request.method,
                request.path,
                headers=request.headers,
                content=request.content,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise StoreConnectionError(STORE_NAME, str(e) or type(e).__name__) from e

    # Connectivity
    def check_connection(self) -> List[str]:
        """
        Verify the store answers and the repository exists.

        Returns:
            Available repository ids

        Raises:
            StoreConnectionError: If the store is unreachable or the
                repository is missing
        """
        try:
            response = self._send(RepositoryListRequest().build())
        except httpx.HTTPError as e:
            raise StoreConnectionError(STORE_NAME, str(e)) from e
        if response.status_code >= 400:
            raise StoreConnectionError(
                STORE_NAME, f"repository listing returned HTTP {response.status_code}"
            )
        repositories = [repo.get("id") for repo in response.json()]
        if self.repository not in repositories:
            raise StoreConnectionError(
                STORE_NAME,
                f"repository '{self.repository}' not found "
                f"(available: {', '.join(r for r in repositories if r)})",
            )
        logger.info(
            "Graph store connected",
            base_url=self.base_url,
            repository=self.repository,
        )
        return repositories

    # Queries
    def select(self, request: SparqlSelectRequest) -> List[Dict[str, str]]:
        """Run a SELECT and return rows as ``{variable: value}`` dicts."""
        try:
            response = self._send(request.build(self.repository))
        except httpx.HTTPError as e:
            raise StoreConnectionError(STORE_NAME, f"query failed: {e}") from e
        if response.status_code >= 400:
            raise StoreConnectionError(
                STORE_NAME,
                f"query returned HTTP {response.status_code}: {response.text[:200]}",
            )
        bindings = response.json().get("results", {}).get("bindings", [])
        return [
            {name: cell.get("value") for name, cell in row.items()} for row in bindings
        ]

    def list_graphs(self, page_size: int = 500) -> KeysetPager[NamedGraph]:
        """Lazy, restartable listing of every named graph with its triple count."""

        def fetch(after: Optional[str], limit: int) -> List[NamedGraph]:
            rows = self.select(graph_counts_query(after, limit))
            return [
                NamedGraph(iri=row["g"], triple_count=int(row.get("count") or 0))
                for row in rows
                if row.get("g")
            ]

        return KeysetPager(fetch, key=lambda graph: graph.iri, page_size=page_size)

    def list_ontologies(
        self,
        scope: str = "all",
        tenant_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        page_size: int = 500,
    ) -> Iterator[List[OntologyRecord]]:
        """Batches of ontology records, one batch per page of ontology graphs."""
        pager = self.list_ontology_graphs(
            scope, tenant_id=tenant_id, workspace_id=workspace_id, page_size=page_size
        )
        for graph_iris in pager:
            yield self.ontology_records(graph_iris)

    def list_ontology_graphs(
        self,
        scope: str = "all",
        tenant_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        page_size: int = 500,
    ) -> KeysetPager[str]:
        """Lazy, restartable listing of graph IRIs holding an owl:Ontology."""
        scope_filter = ontology_scope_filter(
            self.graph_iri_base, scope, tenant_id=tenant_id, workspace_id=workspace_id
        )

        def fetch(after: Optional[str], limit: int) -> List[str]:
            rows = self.select(ontology_graphs_query(after, limit, scope_filter))
            return [row["g"] for row in rows if row.get("g")]

        return KeysetPager(fetch, key=lambda iri: iri, page_size=page_size)

    def ontology_records(self, graph_iris: List[str]) -> List[OntologyRecord]:
        """
        Ontology metadata for the given graphs, one record per ontology subject.

        Graph IRIs that cannot be written into a query are skipped; callers
        that must account for them check :func:`is_queryable_iri` first.
        """
        queryable = []
        for graph_iri in graph_iris:
            if is_queryable_iri(graph_iri):
                queryable.append(graph_iri)
            else:
                logger.warning("Graph IRI cannot be queried; skipped", graph=graph_iri)
        if not queryable:
            return []

        rows = self.select(ontology_metadata_query(queryable))
        records: Dict[tuple, OntologyRecord] = {}
        for row in rows:
            graph_iri = row.get("g")
            ontology_iri = row.get("ontology") or ""
            if not graph_iri or (graph_iri, ontology_iri) in records:
                continue
            ontology_id = (
                ontology_id_from_iri(ontology_iri)
                or ontology_id_from_iri(graph_iri)
                or ""
            )
            records[(graph_iri, ontology_iri)] = OntologyRecord(
                ontology_id=ontology_id,
                label=row.get("label") or ontology_id,
                graph_iri=graph_iri,
                scope=scope_name(classify(graph_iri)),
                comment=row.get("comment"),
            )
        return list(records.values())

    # Deletion
    def delete_graph(self, graph_iri: str) -> bool:
        """
        Delete one named graph via the graph store protocol.

        Returns:
            True if the graph was deleted, False if it was already absent

        Raises:
            ItemOperationError: If the store refused or failed the delete
            StoreConnectionError: If the store cannot be reached
        """
        try:
            request = GraphDeleteRequest(graph_iri).build(self.repository)
        except ValueError as e:
            raise ItemOperationError(graph_iri, str(e)) from e
        try:
            response = self._send(request)
        except httpx.HTTPError as e:
            raise ItemOperationError(graph_iri, f"{type(e).__name__}: {e}") from e

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise ItemOperationError(
                graph_iri,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return True
