"""Contracts of the document store the replicator runs against."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from replicator.exceptions import RevisionConflictError


class ChangeFeed(ABC):
    """
    Live subscription to a database's changes.

    Iteration yields ``{"id", "doc", "deleted"}`` events. Iteration ending is
    the terminal "complete" notification, an exception raised from it is the
    terminal "error" notification.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Stop the feed; pending iteration ends afterwards."""
        ...


class DocumentStore(ABC):
    """A database holding control documents."""

    @abstractmethod
    async def get(self, doc_id: str) -> Dict[str, Any]:
        """
        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def put(self, doc: Dict[str, Any], user_ctx: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Create or update a document.

        Raises:
            RevisionConflictError: If ``doc["_rev"]`` is not the latest revision
        """
        ...

    @abstractmethod
    async def all_docs(self, include_docs: bool = True) -> Dict[str, Any]:
        """Return ``{"rows": [{"id": ..., "doc": ...}, ...]}`` for live documents."""
        ...

    @abstractmethod
    def changes(self, since: Any = "now", live: bool = True, include_docs: bool = True) -> ChangeFeed:
        ...


def is_conflict(err: BaseException) -> bool:
    """True if ``err`` reports a stale-revision write."""
    return isinstance(err, RevisionConflictError) or getattr(err, "status", None) == 409
