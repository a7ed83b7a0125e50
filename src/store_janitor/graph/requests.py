"""
Typed request builders for the triple store.

All escaping and encoding for the graph store lives here: SPARQL string
literals, IRI references inside queries, and the percent-encoded ``graph``
parameter of the graph store protocol. Callers never concatenate IRIs into
queries or URLs themselves.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence
from urllib.parse import quote

OWL = "http://www.w3.org/2002/07/owl#"
RDFS = "http://www.w3.org/2000/01/rdf-schema#"

SPARQL_QUERY_CONTENT_TYPE = "application/sparql-query"
SPARQL_RESULTS_JSON = "application/sparql-results+json"

# Characters not allowed inside an IRIREF (SPARQL 1.1 grammar, production 139)
_IRI_FORBIDDEN = re.compile(r'[<>"{}|^`\\\x00-\x20]')

_LITERAL_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def escape_literal(value: str) -> str:
    """Render ``value`` as a double-quoted SPARQL string literal."""
    return '"' + "".join(_LITERAL_ESCAPES.get(ch, ch) for ch in value) + '"'


def is_queryable_iri(iri: str) -> bool:
    """True if ``iri`` can be written as an IRIREF inside a query."""
    return bool(iri) and not _IRI_FORBIDDEN.search(iri)


def iri_ref(iri: str) -> str:
    """Render ``iri`` as ``<iri>``, rejecting characters an IRIREF cannot hold."""
    if not iri:
        raise ValueError("IRI cannot be empty")
    if not is_queryable_iri(iri):
        raise ValueError(f"IRI contains characters not allowed in a SPARQL IRI: {iri!r}")
    return f"<{iri}>"


@dataclass(frozen=True)
class GraphStoreRequest:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    content: Optional[str] = None


@dataclass(frozen=True)
class SparqlSelectRequest:
    """A SPARQL SELECT posted to the repository endpoint."""

    query: str

    def build(self, repository: str) -> GraphStoreRequest:
        return GraphStoreRequest(
            method="POST",
            path=f"/repositories/{quote(repository, safe='')}",
            headers={
                "Content-Type": SPARQL_QUERY_CONTENT_TYPE,
                "Accept": SPARQL_RESULTS_JSON,
            },
            content=self.query,
        )


@dataclass(frozen=True)
class GraphDeleteRequest:
    """Graph store protocol DELETE of one named graph."""

    graph_iri: str

    def build(self, repository: str) -> GraphStoreRequest:
        if not self.graph_iri:
            raise ValueError("graph IRI cannot be empty")
        encoded = quote(self.graph_iri, safe="")
        return GraphStoreRequest(
            method="DELETE",
            path=(
                f"/repositories/{quote(repository, safe='')}"
                f"/rdf-graphs/service?graph={encoded}"
            ),
            headers={"Accept": "application/json"},
        )


@dataclass(frozen=True)
class RepositoryListRequest:
    def build(self, repository: str = "") -> GraphStoreRequest:
        return GraphStoreRequest(
            method="GET",
            path="/rest/repositories",
            headers={"Accept": "application/json"},
        )


def graph_counts_query(after: Optional[str], limit: int) -> SparqlSelectRequest:
    """One keyset page of ``?g`` with its triple count, ordered by graph IRI."""
    keyset = f"\n  FILTER(STR(?g) > {escape_literal(after)})" if after else ""
    query = (
        "SELECT ?g (COUNT(*) AS ?count)\n"
        "WHERE {\n"
        "  GRAPH ?g { ?s ?p ?o }"
        f"{keyset}\n"
        "}\n"
        "GROUP BY ?g\n"
        "ORDER BY STR(?g)\n"
        f"LIMIT {int(limit)}"
    )
    return SparqlSelectRequest(query)


def ontology_scope_filter(
    graph_iri_base: str,
    scope: str,
    tenant_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> Optional[str]:
    """
    Build the FILTER expression restricting ``?g`` to one ontology scope.

    ``scope`` is one of ``global``, ``tenant``, ``workspace`` or ``all``.
    ``all`` returns None (no restriction beyond holding an owl:Ontology).
    """
    base = graph_iri_base.rstrip("/")
    if scope == "all":
        return None
    if scope == "global":
        return f"STRSTARTS(STR(?g), {escape_literal(base + '/global/ontology/')})"
    if scope == "tenant":
        if tenant_id:
            prefix = f"{base}/tenant/{tenant_id}/ontology/"
            return f"STRSTARTS(STR(?g), {escape_literal(prefix)})"
        return f"REGEX(STR(?g), {escape_literal('/tenant/[^/]+/ontology/')})"
    if scope == "workspace":
        if tenant_id and workspace_id:
            prefix = f"{base}/tenant/{tenant_id}/workspace/{workspace_id}/ontology/"
            return f"STRSTARTS(STR(?g), {escape_literal(prefix)})"
        return f"REGEX(STR(?g), {escape_literal('/workspace/[^/]+/ontology/')})"
    raise ValueError(f"Unknown ontology scope: {scope}")


def ontology_graphs_query(
    after: Optional[str], limit: int, scope_filter: Optional[str]
) -> SparqlSelectRequest:
    """One keyset page of distinct graphs holding an owl:Ontology subject."""
    filters = []
    if scope_filter:
        filters.append(f"  FILTER({scope_filter})")
    if after:
        filters.append(f"  FILTER(STR(?g) > {escape_literal(after)})")
    filter_block = ("\n" + "\n".join(filters)) if filters else ""
    query = (
        f"PREFIX owl: {iri_ref(OWL)}\n"
        "SELECT DISTINCT ?g\n"
        "WHERE {\n"
        "  GRAPH ?g { ?ontology a owl:Ontology }"
        f"{filter_block}\n"
        "}\n"
        "ORDER BY STR(?g)\n"
        f"LIMIT {int(limit)}"
    )
    return SparqlSelectRequest(query)


def ontology_metadata_query(graph_iris: Sequence[str]) -> SparqlSelectRequest:
    """Ontology subject, label and comment for each of the given graphs."""
    values = " ".join(iri_ref(g) for g in graph_iris)
    query = (
        f"PREFIX owl: {iri_ref(OWL)}\n"
        f"PREFIX rdfs: {iri_ref(RDFS)}\n"
        "SELECT ?g ?ontology ?label ?comment\n"
        "WHERE {\n"
        f"  VALUES ?g {{ {values} }}\n"
        "  GRAPH ?g {\n"
        "    ?ontology a owl:Ontology .\n"
        "    OPTIONAL { ?ontology rdfs:label ?label }\n"
        "    OPTIONAL { ?ontology rdfs:comment ?comment }\n"
        "  }\n"
        "}\n"
        "ORDER BY STR(?g) STR(?ontology)"
    )
    return SparqlSelectRequest(query)

