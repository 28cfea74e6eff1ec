"""Per-database bookkeeping of the replicator."""

import asyncio
from typing import Dict, Optional

from replicator.collaborators import ChangeFeed
from replicator.signature import Signature
from replicator.task_handle import ReplicationTask
from replicator.tracker import SelfWriteTracker


class Registry:
    """
    State the replicator keeps for one controlled database.

    Only the replicator mutates it; all mutations happen between suspension
    points of a single event loop.
    """

    def __init__(self):
        self.feed: Optional[ChangeFeed] = None
        self.feed_task: Optional[asyncio.Task] = None
        self.tasks: Dict[str, ReplicationTask] = {}
        self.signatures: Dict[str, Signature] = {}
        self.self_writes = SelfWriteTracker()

    def register(self, task: ReplicationTask, signature: Signature) -> None:
        """Record a freshly started job and the signature it serves."""
        self.tasks[task.doc_id] = task
        self.signatures[task.replication_id] = signature

    def release(self, doc_id: str) -> Optional[ReplicationTask]:
        """
        Forget the job registered for ``doc_id`` and its signature.

        Returns:
            The released task, or None if no job was registered
        """
        task = self.tasks.pop(doc_id, None)
        if task is not None:
            self.signatures.pop(task.replication_id, None)
        return task

    def owns(self, task: ReplicationTask) -> bool:
        return self.tasks.get(task.doc_id) is task
