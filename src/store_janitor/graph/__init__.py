from .classifier import GraphCategory, GraphScope, classify, parse_scope
from .client import GraphStoreClient
from .policy import PreservationPolicy, PurgeMode, should_delete
from .purger import BulkGraphPurger
from .records import NamedGraph, OntologyRecord

__all__ = [
    "GraphCategory",
    "GraphScope",
    "classify",
    "parse_scope",
    "GraphStoreClient",
    "PreservationPolicy",
    "PurgeMode",
    "should_delete",
    "BulkGraphPurger",
    "NamedGraph",
    "OntologyRecord",
]
