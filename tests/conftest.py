"""Shared pytest fixtures and in-memory collaborators for all tests."""

import asyncio
import copy
import uuid
from typing import Any, Dict, List, Optional

import pytest

from replicator.collaborators import ChangeFeed, DocumentStore
from replicator.exceptions import DocumentNotFoundError, RevisionConflictError
from replicator.lifecycle import Replicator
from replicator.task_handle import ReplicationEngine
from replicator.validation import StrictValidation

_FEED_END = object()


class MemoryChangeFeed(ChangeFeed):
    """Live change feed buffering events in an asyncio queue."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancel_calls = 0

    def push(self, event: Dict[str, Any]) -> None:
        self.queue.put_nowait(event)

    def fail(self, error: Exception) -> None:
        self.queue.put_nowait(error)

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.queue.put_nowait(_FEED_END)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        item = await self.queue.get()
        if item is _FEED_END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class MemoryDatabase(DocumentStore):
    """
    Revisioned in-memory document store.

    Writes are checked by ``validation`` when given, and every write is
    pushed to the live change feeds opened on the database.
    """

    def __init__(self, name: str = "_replicator", validation: Optional[StrictValidation] = None):
        self.name = name
        self.validation = validation
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.feeds: List[MemoryChangeFeed] = []
        self.puts: List[Dict[str, Any]] = []
        self.forced_conflicts: Dict[str, int] = {}

    def __repr__(self):
        return f"MemoryDatabase({self.name!r})"

    async def get(self, doc_id: str) -> Dict[str, Any]:
        doc = self.docs.get(doc_id)
        if doc is None or doc.get("_deleted"):
            raise DocumentNotFoundError(f"missing: {doc_id}")
        return copy.deepcopy(doc)

    async def put(self, doc: Dict[str, Any], user_ctx: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        doc = copy.deepcopy(doc)
        doc_id = doc["_id"]
        current = self.docs.get(doc_id)
        live = current is not None and not current.get("_deleted")

        if self.forced_conflicts.get(doc_id):
            self.forced_conflicts[doc_id] -= 1
            raise RevisionConflictError(f"Document update conflict: {doc_id}")
        if live and doc.get("_rev") != current["_rev"]:
            raise RevisionConflictError(f"Document update conflict: {doc_id}")
        if not live and doc.get("_rev") and not doc.get("_deleted"):
            raise RevisionConflictError(f"Document update conflict: {doc_id}")

        if self.validation is not None:
            old = copy.deepcopy(current) if live else None
            self.validation.validate(self, doc, old, user_ctx)

        generation = int(current["_rev"].split("-")[0]) + 1 if current else 1
        doc["_rev"] = f"{generation}-{uuid.uuid4().hex}"
        self.docs[doc_id] = doc
        self.puts.append({"doc": copy.deepcopy(doc), "user_ctx": user_ctx})

        deleted = bool(doc.get("_deleted"))
        for feed in self.feeds:
            feed.push({"id": doc_id, "doc": copy.deepcopy(doc), "deleted": deleted})
        return {"ok": True, "id": doc_id, "rev": doc["_rev"]}

    async def remove(self, doc_id: str) -> Dict[str, Any]:
        current = await self.get(doc_id)
        return await self.put({"_id": doc_id, "_rev": current["_rev"], "_deleted": True})

    async def all_docs(self, include_docs: bool = True) -> Dict[str, Any]:
        rows = []
        for doc_id in sorted(self.docs):
            doc = self.docs[doc_id]
            if doc.get("_deleted"):
                continue
            row = {"id": doc_id, "value": {"rev": doc["_rev"]}}
            if include_docs:
                row["doc"] = copy.deepcopy(doc)
            rows.append(row)
        return {"total_rows": len(rows), "rows": rows}

    def changes(self, since: Any = "now", live: bool = True, include_docs: bool = True) -> MemoryChangeFeed:
        feed = MemoryChangeFeed()
        self.feeds.append(feed)
        return feed

    def seed(self, doc: Dict[str, Any]) -> None:
        """Store ``doc`` directly, bypassing validation and feeds."""
        doc = copy.deepcopy(doc)
        doc["_rev"] = f"1-{uuid.uuid4().hex}"
        self.docs[doc["_id"]] = doc


class FakeJob:
    """One call to FakeEngine.replicate, finished on demand by the test."""

    def __init__(self, source: Any, target: Any, options: Dict[str, Any]):
        self.source = source
        self.target = target
        self.options = options
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.cancel_calls = 0

    async def run(self) -> Dict[str, Any]:
        try:
            return await self.future
        except asyncio.CancelledError:
            self.cancel_calls += 1
            raise

    def complete(self, stats: Optional[Dict[str, Any]] = None) -> None:
        self.future.set_result(stats if stats is not None else {"ok": True, "status": "complete"})

    def fail(self, error: Exception) -> None:
        self.future.set_exception(error)


class FakeEngine(ReplicationEngine):
    """Replication engine whose jobs run until the test finishes them."""

    def __init__(self):
        self.jobs: List[FakeJob] = []

    def replicate(self, source: Any, target: Any, options: Dict[str, Any]):
        job = FakeJob(source, target, options)
        self.jobs.append(job)
        return job.run()

    def running(self) -> List[FakeJob]:
        return [job for job in self.jobs if not job.future.done()]


async def _settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """
    Let pending callbacks, feed events and write-backs run.

    Returns:
        Coroutine function draining the event loop
    """
    return _settle


@pytest.fixture
def validation():
    return StrictValidation()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def db(validation):
    return MemoryDatabase(validation=validation)


@pytest.fixture
def replicator(validation, engine):
    return Replicator(validation, engine)
