"""Handle to one running replication job."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from common.constants import ENGINE_STATUS_FIELDS
from common.logging_config import get_logger

logger = get_logger(__name__)

COMPLETED = "completed"
ERROR = "error"
CANCELLED = "cancelled"


class ReplicationEngine(ABC):
    """Transfers documents from a source to a target."""

    @abstractmethod
    async def replicate(self, source: Any, target: Any, options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one replication to completion.

        Returns:
            Stats payload describing the finished replication

        Raises:
            Exception: Any failure; its message becomes the document's error reason
        """
        ...


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal result of a replication job."""
    state: str
    stats: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.state == CANCELLED


class ReplicationTask:
    """
    One replication job started for a control document.

    The job emits exactly one terminal outcome, observed through ``join``,
    including after ``cancel``.
    """

    def __init__(
        self,
        engine: ReplicationEngine,
        doc_id: str,
        replication_id: str,
        source: Any,
        target: Any,
        options: Dict[str, Any]
    ):
        self.doc_id = doc_id
        self.replication_id = replication_id
        self._task = asyncio.create_task(engine.replicate(source, target, options))
        self._outcome: Optional[TaskOutcome] = None

    def cancel(self) -> None:
        """Request cancellation; the outcome is still delivered via ``join``."""
        self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    async def join(self) -> TaskOutcome:
        """Wait for the job's terminal outcome. Safe to call more than once."""
        if self._outcome is not None:
            return self._outcome

        try:
            stats = await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            outcome = TaskOutcome(state=CANCELLED)
        except Exception as e:
            logger.debug(f"Replication {self.replication_id} for {self.doc_id} failed: {e}")
            outcome = TaskOutcome(state=ERROR, reason=str(e))
        else:
            stats = {k: v for k, v in (stats or {}).items() if k not in ENGINE_STATUS_FIELDS}
            outcome = TaskOutcome(state=COMPLETED, stats=stats)

        self._outcome = outcome
        return outcome

    def __repr__(self):
        return f"ReplicationTask(doc_id={self.doc_id!r}, replication_id={self.replication_id!r})"
