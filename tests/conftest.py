# Shared fixtures: in-memory Redis and an httpx-mocked triple store
# No live services are needed to run the suite.

import fnmatch
import json
import os
import re
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

from store_janitor.graph.client import GraphStoreClient

os.environ.setdefault("ENV", "development")
os.environ.pop("CONFIG_PATH", None)


# =============================================================================
# Key-value store
# =============================================================================


_CURSOR_STRIDE = 1_000_000


class JsonDocument(dict):
    """Marks a value stored via RedisJSON."""


class _FakeJson:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis

    def get(self, key: str, *paths: str):
        self.redis._record("json.get", key)
        doc = self.redis.data.get(key)
        if not isinstance(doc, JsonDocument):
            return None
        values = {}
        for path in paths:
            field = path[2:] if path.startswith("$.") else path
            values[path] = [doc[field]] if field in doc else []
        if len(paths) == 1:
            return values[paths[0]]
        return values


class FakeRedis:
    """
    Minimal in-memory stand-in for redis.Redis (decode_responses=True).

    Supports the commands the janitor issues. ``errors`` maps
    ``(command, key)`` or ``command`` to an exception raised on that call.
    """

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.calls: List[tuple] = []
        self.errors: Dict[Any, Exception] = {}
        self._passes: List[List[str]] = []

    def _record(self, command: str, key: Optional[str] = None) -> None:
        self.calls.append((command, key))
        error = self.errors.get((command, key)) or self.errors.get(command)
        if error is not None:
            raise error

    def calls_for(self, command: str) -> List[Optional[str]]:
        return [key for name, key in self.calls if name == command]

    # Seeding helpers
    def add_json(self, key: str, **fields) -> None:
        self.data[key] = JsonDocument(fields)

    # Connection
    def ping(self) -> bool:
        self._record("ping")
        return True

    def close(self) -> None:
        pass

    # Cursors
    # A pass iterates a snapshot taken at cursor 0, skipping entries removed
    # since; entries deleted mid-pass never shift later pages.
    def _page(self, items: List[str], count: int, live):
        self._passes.append(items)
        return self._resume(len(self._passes) * _CURSOR_STRIDE, count, live)

    def _resume(self, cursor: int, count: int, live):
        pass_no, position = divmod(cursor, _CURSOR_STRIDE)
        items = self._passes[pass_no - 1]
        page = [item for item in items[position : position + count] if live(item)]
        position += count
        if position >= len(items):
            return 0, page
        return pass_no * _CURSOR_STRIDE + position, page

    # Keyspace
    def scan(self, cursor: int = 0, match: Optional[str] = None, count: int = 10):
        self._record("scan", match)
        if cursor == 0:
            keys = sorted(
                k for k in self.data if match is None or fnmatch.fnmatchcase(k, match)
            )
            return self._page(keys, count, lambda k: k in self.data)
        return self._resume(cursor, count, lambda k: k in self.data)

    def type(self, key: str) -> str:
        self._record("type", key)
        value = self.data.get(key)
        if value is None:
            return "none"
        if isinstance(value, JsonDocument):
            return "ReJSON-RL"
        if isinstance(value, dict):
            return "hash"
        if isinstance(value, set):
            return "set"
        return "string"

    def exists(self, *keys: str) -> int:
        for key in keys:
            self._record("exists", key)
        return sum(1 for key in keys if key in self.data)

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._record("delete", key)
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def get(self, key: str) -> Optional[str]:
        self._record("get", key)
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    # Hashes
    def hset(self, key: str, mapping: Dict[str, str]) -> int:
        self.data.setdefault(key, {}).update(mapping)
        return len(mapping)

    def hget(self, key: str, field: str) -> Optional[str]:
        self._record("hget", key)
        value = self.data.get(key)
        return value.get(field) if isinstance(value, dict) else None

    def hmget(self, key: str, fields: List[str]) -> List[Optional[str]]:
        self._record("hmget", key)
        value = self.data.get(key)
        if not isinstance(value, dict):
            return [None for _ in fields]
        return [value.get(f) for f in fields]

    # Sets
    def sadd(self, key: str, *members: str) -> int:
        target: Set[str] = self.data.setdefault(key, set())
        before = len(target)
        target.update(members)
        return len(target) - before

    def sscan(self, key: str, cursor: int = 0, count: int = 10):
        self._record("sscan", key)

        def live(member):
            return member in (self.data.get(key) or ())

        if cursor == 0:
            return self._page(sorted(self.data.get(key) or ()), count, live)
        return self._resume(cursor, count, live)

    def sismember(self, key: str, member: str) -> bool:
        self._record("sismember", key)
        return member in (self.data.get(key) or ())

    def srem(self, key: str, *members: str) -> int:
        self._record("srem", key)
        target = self.data.get(key)
        if not isinstance(target, set):
            return 0
        removed = sum(1 for m in members if m in target)
        target.difference_update(members)
        if not target:
            del self.data[key]
        return removed

    def json(self) -> _FakeJson:
        return _FakeJson(self)


@pytest.fixture
def fake_redis():
    return FakeRedis()


# =============================================================================
# Triple store
# =============================================================================

BASE = "http://purplefabric.ai/graphs"

_AFTER = re.compile(r'FILTER\(STR\(\?g\) > "([^"]*)"\)')
_LIMIT = re.compile(r"LIMIT (\d+)")
_STARTS = re.compile(r'STRSTARTS\(STR\(\?g\), "([^"]*)"\)')
_REGEX = re.compile(r'REGEX\(STR\(\?g\), "([^"]*)"\)')
_VALUES = re.compile(r"VALUES \?g \{(.*?)\}", re.S)


class FakeGraphStore:
    """
    httpx.MockTransport handler emulating one GraphDB repository.

    ``graphs`` maps graph IRI to ``{"triples": int, "ontologies": [...]}``
    where each ontology dict holds ``iri``, ``label`` and ``comment``.
    """

    def __init__(self, repository: str = "ontologies"):
        self.repository = repository
        self.graphs: Dict[str, Dict[str, Any]] = {}
        self.deleted: List[str] = []
        self.queries: List[str] = []
        self.failing: Dict[str, int] = {}
        self.unreachable = False
        self.unreachable_on_delete = False

    def add_graph(
        self,
        iri: str,
        triples: int = 1,
        ontology_iri: Optional[str] = None,
        label: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> None:
        self.graphs[iri] = {"triples": triples, "ontologies": []}
        if ontology_iri:
            self.add_ontology(iri, ontology_iri, label=label, comment=comment)

    def add_ontology(
        self,
        graph_iri: str,
        ontology_iri: str,
        label: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> None:
        self.graphs[graph_iri]["ontologies"].append(
            {"iri": ontology_iri, "label": label, "comment": comment}
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        if request.method == "GET" and path == "/rest/repositories":
            return httpx.Response(200, json=[{"id": self.repository}, {"id": "other"}])

        if request.method == "POST" and path == f"/repositories/{self.repository}":
            return self._select(request.content.decode())

        if (
            request.method == "DELETE"
            and path == f"/repositories/{self.repository}/rdf-graphs/service"
        ):
            if self.unreachable_on_delete:
                raise httpx.ConnectError("Connection refused", request=request)
            iri = request.url.params["graph"]
            if iri in self.failing:
                return httpx.Response(self.failing[iri], text="internal error")
            if iri not in self.graphs:
                return httpx.Response(404, text="graph not found")
            del self.graphs[iri]
            self.deleted.append(iri)
            return httpx.Response(204)

        return httpx.Response(400, text=f"unexpected request {request.method} {path}")

    def _select(self, query: str) -> httpx.Response:
        self.queries.append(query)
        after = _AFTER.search(query)
        limit = _LIMIT.search(query)
        iris = sorted(self.graphs)
        if after:
            iris = [g for g in iris if g > after.group(1)]

        if "VALUES ?g" in query:
            wanted = re.findall(r"<([^>]+)>", _VALUES.search(query).group(1))
            rows = []
            for iri in wanted:
                ontologies = (self.graphs.get(iri) or {}).get("ontologies") or []
                for ontology in sorted(ontologies, key=lambda o: o["iri"]):
                    row = {"g": iri, "ontology": ontology["iri"]}
                    if ontology.get("label"):
                        row["label"] = ontology["label"]
                    if ontology.get("comment"):
                        row["comment"] = ontology["comment"]
                    rows.append(row)
            return _bindings(rows)

        if "owl:Ontology" in query:
            iris = [g for g in iris if self.graphs[g]["ontologies"]]
            starts = _STARTS.search(query)
            if starts:
                iris = [g for g in iris if g.startswith(starts.group(1))]
            pattern = _REGEX.search(query)
            if pattern:
                iris = [g for g in iris if re.search(pattern.group(1), g)]
            if limit:
                iris = iris[: int(limit.group(1))]
            return _bindings([{"g": g} for g in iris])

        if limit:
            iris = iris[: int(limit.group(1))]
        return _bindings(
            [{"g": g, "count": str(self.graphs[g]["triples"])} for g in iris]
        )


def _bindings(rows: List[Dict[str, str]]) -> httpx.Response:
    body = {
        "head": {"vars": sorted({name for row in rows for name in row})},
        "results": {
            "bindings": [
                {name: {"type": "literal", "value": value} for name, value in row.items()}
                for row in rows
            ]
        },
    }
    return httpx.Response(
        200,
        content=json.dumps(body),
        headers={"Content-Type": "application/sparql-results+json"},
    )


@pytest.fixture
def graph_store():
    return FakeGraphStore()


@pytest.fixture
def graph_client(graph_store):
    http_client = httpx.Client(
        base_url="http://graphdb.test", transport=graph_store.transport()
    )
    client = GraphStoreClient(
        base_url="http://graphdb.test",
        repository=graph_store.repository,
        http_client=http_client,
    )
    yield client
    http_client.close()
