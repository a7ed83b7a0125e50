from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class NamedGraph:
    """One row of the graph listing. Identity is the IRI."""

    iri: str
    triple_count: int = 0


@dataclass(frozen=True)
class OntologyRecord:
    ontology_id: str
    label: str
    graph_iri: str
    scope: str
    comment: Optional[str] = None

    @property
    def iri(self) -> str:
        return self.graph_iri
