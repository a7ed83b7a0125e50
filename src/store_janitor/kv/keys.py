"""
Key and pattern builders for the key-value store.

Record ids are embedded in keys verbatim; SCAN patterns escape glob
metacharacters in any literal part so an id like ``a*b`` never widens a match.
"""

import re
from dataclasses import dataclass
from typing import Optional

from store_janitor.shared.config import DocumentKeyspaceConfig, JobKeyspaceConfig

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(literal: str) -> str:
    """Escape Redis glob metacharacters in a literal key fragment."""
    return _GLOB_SPECIAL.sub(r"\\\1", literal)


@dataclass(frozen=True)
class JobKeyspace:
    hash_prefix: str = "ontology_job:"
    file_lookup_prefix: str = "ontology_job:file:"
    list_prefix: str = "ontology_jobs:"
    workspace_id_field: str = "workspace_id"

    @classmethod
    def from_config(cls, config: JobKeyspaceConfig) -> "JobKeyspace":
        return cls(
            hash_prefix=config.hash_prefix,
            file_lookup_prefix=config.file_lookup_prefix,
            list_prefix=config.list_prefix,
            workspace_id_field=config.workspace_id_field,
        )

    def job_key(self, job_id: str) -> str:
        return f"{self.hash_prefix}{job_id}"

    @property
    def all_set(self) -> str:
        return f"{self.list_prefix}all"

    def workspace_set(self, workspace_id: str) -> str:
        return f"{self.list_prefix}workspace:{workspace_id}"

    @property
    def hash_pattern(self) -> str:
        return f"{escape_glob(self.hash_prefix)}*"

    @property
    def workspace_set_pattern(self) -> str:
        return f"{escape_glob(self.list_prefix + 'workspace:')}*"

    def job_id_from_key(self, key: str) -> Optional[str]:
        """Job id for a job hash key; None for file lookups and foreign keys."""
        if self.file_lookup_prefix and key.startswith(self.file_lookup_prefix):
            return None
        if not key.startswith(self.hash_prefix):
            return None
        return key[len(self.hash_prefix) :] or None

    def workspace_from_set_key(self, key: str) -> Optional[str]:
        prefix = f"{self.list_prefix}workspace:"
        if not key.startswith(prefix):
            return None
        return key[len(prefix) :] or None


@dataclass(frozen=True)
class DocumentKeyspace:
    document_prefix: str = "doc:"
    chunk_prefix: str = "chunk:"
    chunk_set_suffix: str = ":chunks"
    document_id_field: str = "documentId"
    workspace_id_field: str = "workspace_id"

    @classmethod
    def from_config(cls, config: DocumentKeyspaceConfig) -> "DocumentKeyspace":
        return cls(
            document_prefix=config.document_prefix,
            chunk_prefix=config.chunk_prefix,
            chunk_set_suffix=config.chunk_set_suffix,
            document_id_field=config.document_id_field,
            workspace_id_field=config.workspace_id_field,
        )

    def document_key(self, document_id: str) -> str:
        return f"{self.document_prefix}{document_id}"

    def chunk_set_key(self, document_id: str) -> str:
        return f"{self.document_prefix}{document_id}{self.chunk_set_suffix}"

    def chunk_key(self, chunk_id: str) -> str:
        return f"{self.chunk_prefix}{chunk_id}"

    @property
    def chunk_set_pattern(self) -> str:
        return f"{escape_glob(self.document_prefix)}*{escape_glob(self.chunk_set_suffix)}"

    def document_id_from_set_key(self, key: str) -> Optional[str]:
        if not (
            key.startswith(self.document_prefix) and key.endswith(self.chunk_set_suffix)
        ):
            return None
        document_id = key[len(self.document_prefix) : -len(self.chunk_set_suffix)]
        return document_id or None
