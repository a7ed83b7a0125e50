"""
Named-graph classification.

Maps a graph IRI to one of five categories using path shape only. Patterns are
checked from most to least specific, so a tenant ontology graph is never
mistaken for generic data. IRIs matching nothing fall to ``other``, the least
destructive category.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

_GLOBAL_ONTOLOGY = re.compile(r"/global/ontology/")
_TENANT_ONTOLOGY = re.compile(r"/tenant/[^/]+/ontology/")
_WORKSPACE_ONTOLOGY = re.compile(r"/workspace/[^/]+/ontology/")
_SCHEMA_SEGMENT = re.compile(r"/schema(?:[/#?]|$)")
_ONTOLOGY_SEGMENT = re.compile(r"/ontology/")
_WORKSPACE_SEGMENT = re.compile(r"/workspace/[^/]+")

_TENANT_ID = re.compile(r"/tenant/([^/#?]+)")
_WORKSPACE_ID = re.compile(r"/workspace/([^/#?]+)")
_ONTOLOGY_ID = re.compile(r"/ontology/([^/#?]+)")


class GraphCategory(str, Enum):
    GLOBAL_ONTOLOGY = "global-ontology"
    TENANT_ONTOLOGY = "tenant-ontology"
    WORKSPACE_SCHEMA = "workspace-schema"
    WORKSPACE_DATA = "workspace-data"
    OTHER = "other"


ONTOLOGY_CATEGORIES = frozenset(
    {
        GraphCategory.GLOBAL_ONTOLOGY,
        GraphCategory.TENANT_ONTOLOGY,
    }
)

WORKSPACE_CATEGORIES = frozenset(
    {
        GraphCategory.WORKSPACE_SCHEMA,
        GraphCategory.WORKSPACE_DATA,
    }
)


@dataclass(frozen=True)
class GraphScope:
    tenant_id: Optional[str] = None
    workspace_id: Optional[str] = None


def classify(graph_iri: str) -> GraphCategory:
    """Classify a named graph by IRI. Total and pure."""
    iri = graph_iri or ""
    if _GLOBAL_ONTOLOGY.search(iri):
        return GraphCategory.GLOBAL_ONTOLOGY
    if _TENANT_ONTOLOGY.search(iri):
        return GraphCategory.TENANT_ONTOLOGY
    if _SCHEMA_SEGMENT.search(iri) or _WORKSPACE_ONTOLOGY.search(iri):
        return GraphCategory.WORKSPACE_SCHEMA
    if _ONTOLOGY_SEGMENT.search(iri):
        # Ontology graph with no recognizable scope: keep it protected.
        return GraphCategory.WORKSPACE_SCHEMA
    if _WORKSPACE_SEGMENT.search(iri):
        return GraphCategory.WORKSPACE_DATA
    return GraphCategory.OTHER


def is_ontology_graph(graph_iri: str) -> bool:
    """True for any IRI carrying an ``/ontology/`` path segment."""
    return bool(_ONTOLOGY_SEGMENT.search(graph_iri or ""))


def parse_scope(graph_iri: str) -> GraphScope:
    """Extract the owning tenant/workspace from ``/tenant/<t>/workspace/<w>/``."""
    iri = graph_iri or ""
    tenant = _TENANT_ID.search(iri)
    workspace = _WORKSPACE_ID.search(iri)
    return GraphScope(
        tenant_id=tenant.group(1) if tenant else None,
        workspace_id=workspace.group(1) if workspace else None,
    )


def ontology_id_from_iri(iri: str) -> Optional[str]:
    """
    Derive an ontology id from an ontology or graph IRI.

    ``http://x/graphs/global/ontology/resume`` -> ``resume``
    ``http://x/ontologies/banking#`` -> ``banking``
    """
    if not iri:
        return None
    match = _ONTOLOGY_ID.search(iri)
    if match:
        return match.group(1)
    trimmed = iri.rstrip("#/")
    tail = re.split(r"[#/]", trimmed)[-1] if trimmed else ""
    if not tail or ":" in tail:
        return None
    return tail


def scope_name(category: GraphCategory) -> str:
    """Ownership tier of an ontology graph category."""
    if category == GraphCategory.GLOBAL_ONTOLOGY:
        return "global"
    if category == GraphCategory.TENANT_ONTOLOGY:
        return "tenant"
    return "workspace"


def summarize(graphs: Iterable) -> Dict[str, Dict[str, int]]:
    """Per-category graph and triple counts for a listing of NamedGraph rows."""
    summary: Dict[str, Dict[str, int]] = {
        category.value: {"graphs": 0, "triples": 0} for category in GraphCategory
    }
    for graph in graphs:
        bucket = summary[classify(graph.iri).value]
        bucket["graphs"] += 1
        bucket["triples"] += graph.triple_count
    return summary
