"""
Preservation policy: keep/delete decisions for classified graphs.

The policy is advisory and side-effect free. The purger is the only place a
decision is acted on.
"""

from enum import Enum
from typing import Iterable, Optional, Union

from store_janitor.shared.config import (
    DEFAULT_DANGLING_ONTOLOGY_IDS,
    DEFAULT_PLACEHOLDER_MARKERS,
)
from store_janitor.shared.errors import ConfigurationError

from .classifier import (
    ONTOLOGY_CATEGORIES,
    WORKSPACE_CATEGORIES,
    GraphCategory,
    GraphScope,
    is_ontology_graph,
    ontology_id_from_iri,
    parse_scope,
)
from .records import NamedGraph, OntologyRecord

Unit = Union[NamedGraph, OntologyRecord]


class PurgeMode(str, Enum):
    DATA_ONLY = "data-only"
    WORKSPACE_RESET = "workspace-reset"
    DANGLING_CLEANUP = "dangling-cleanup"


class PreservationPolicy:
    """
    Decide whether a unit may be deleted under one purge mode.

    - data-only: deletes everything except global/tenant ontology graphs and
      any graph carrying an ``/ontology/`` segment.
    - workspace-reset: deletes workspace schema/data graphs owned by the
      target workspace (and tenant, when given). Nothing else.
    - dangling-cleanup: deletes only units whose id or label is on the
      denylist (case-insensitive) or whose comment carries a placeholder
      marker. Scope alone never qualifies a unit.
    """

    def __init__(
        self,
        mode: Union[PurgeMode, str],
        target: Optional[GraphScope] = None,
        denylist: Optional[Iterable[str]] = None,
        placeholder_markers: Optional[Iterable[str]] = None,
    ):
        self.mode = PurgeMode(mode)
        self.target = target
        if denylist is None:
            denylist = DEFAULT_DANGLING_ONTOLOGY_IDS
        if placeholder_markers is None:
            placeholder_markers = DEFAULT_PLACEHOLDER_MARKERS
        self.denylist = frozenset(d.strip().lower() for d in denylist if d.strip())
        self.placeholder_markers = tuple(m for m in placeholder_markers if m)

        if self.mode == PurgeMode.WORKSPACE_RESET and not (
            target and target.workspace_id
        ):
            raise ConfigurationError("workspace-reset requires a target workspace")
        if self.mode == PurgeMode.DATA_ONLY and target and (
            target.tenant_id or target.workspace_id
        ):
            raise ConfigurationError(
                "data-only purges every tenant and workspace; it takes no target scope"
            )

    def should_delete(self, unit: Unit, category: GraphCategory) -> bool:
        if self.mode == PurgeMode.DATA_ONLY:
            return self._data_only(unit, category)
        if self.mode == PurgeMode.WORKSPACE_RESET:
            return self._workspace_reset(unit, category)
        return self.is_dangling(unit)

    def _data_only(self, unit: Unit, category: GraphCategory) -> bool:
        if category in ONTOLOGY_CATEGORIES:
            return False
        return not is_ontology_graph(unit.iri)

    def _workspace_reset(self, unit: Unit, category: GraphCategory) -> bool:
        if category not in WORKSPACE_CATEGORIES:
            return False
        owner = parse_scope(unit.iri)
        if owner.workspace_id != self.target.workspace_id:
            return False
        if self.target.tenant_id and owner.tenant_id != self.target.tenant_id:
            return False
        return True

    def is_dangling(self, unit: Unit) -> bool:
        if isinstance(unit, OntologyRecord):
            names = (unit.ontology_id, unit.label)
            comment = unit.comment or ""
        else:
            names = (ontology_id_from_iri(unit.iri) if is_ontology_graph(unit.iri) else None,)
            comment = ""

        for name in names:
            if name and name.strip().lower() in self.denylist:
                return True
        return any(marker in comment for marker in self.placeholder_markers)


def should_delete(
    unit: Unit,
    category: GraphCategory,
    mode: Union[PurgeMode, str],
    target: Optional[GraphScope] = None,
    denylist: Optional[Iterable[str]] = None,
) -> bool:
    """Functional form of :meth:`PreservationPolicy.should_delete`."""
    return PreservationPolicy(mode, target=target, denylist=denylist).should_delete(
        unit, category
    )
