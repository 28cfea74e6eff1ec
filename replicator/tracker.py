"""Tracks writes the controller made itself so their change echoes are skipped."""

from collections import Counter


class SelfWriteTracker:
    """
    Pending self-writes per document id.

    A mark must be placed before the write is issued: the change feed may
    deliver the echo before the write call returns.
    """

    def __init__(self):
        self._pending: Counter = Counter()

    def mark(self, doc_id: str) -> None:
        self._pending[doc_id] += 1

    def unmark(self, doc_id: str) -> None:
        """Roll back a mark whose write failed."""
        if self._pending[doc_id] <= 1:
            del self._pending[doc_id]
        else:
            self._pending[doc_id] -= 1

    def consume(self, doc_id: str) -> bool:
        """
        Clear one pending mark for ``doc_id``.

        Returns:
            True if the change for ``doc_id`` was our own write
        """
        if self._pending[doc_id] <= 0:
            del self._pending[doc_id]
            return False
        self.unmark(doc_id)
        return True

    def is_pending(self, doc_id: str) -> bool:
        return self._pending.get(doc_id, 0) > 0

    def __len__(self) -> int:
        return sum(self._pending.values())
