"""
Replicator lifecycle controller.

Turns the documents of a control database into running replication jobs and
reports each job's outcome back into its document.
"""

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from common.constants import (
    DELETED_FIELD,
    DESIGN_DOC_PREFIX,
    ID_FIELD,
    REPLICATION_ID_FIELD,
    REPLICATION_STATE_FIELD,
    REPLICATION_STATE_REASON_FIELD,
    REPLICATION_STATE_TIME_FIELD,
    REPLICATION_STATS_FIELD,
    SOURCE_FIELD,
    TARGET_FIELD,
)
from common.logging_config import get_logger
from replicator.collaborators import ChangeFeed, DocumentStore, is_conflict
from replicator.config import DESIGN_DOC_ID, MAX_WRITE_RETRIES, REPLICATOR_ROLES
from replicator.exceptions import (
    AlreadyActiveError,
    AlreadyInactiveError,
    DatabaseNotActiveError,
    DocumentNotFoundError,
    ValidationAlreadyInstalledError,
)
from replicator.registry import Registry
from replicator.schemas import ReplicationState
from replicator.signature import Signature, compute_signature, find_matching_replication_id, replication_options
from replicator.task_handle import COMPLETED, ReplicationEngine, ReplicationTask, TaskOutcome
from replicator.validation import ValidationService

logger = get_logger(__name__)


def design_document() -> Dict[str, Any]:
    """The design document installed in every control database."""
    return {
        ID_FIELD: DESIGN_DOC_ID,
        "language": "python",
        "validate_doc_update": "replicator.validation.validate_replication_document",
    }


class Replicator:
    """
    Keeps running replications in line with the documents of control databases.

    One instance may control several databases; each gets its own Registry.
    """

    def __init__(self, validation: ValidationService, engine: ReplicationEngine):
        self.validation = validation
        self.engine = engine
        self._registries: Dict[DocumentStore, Registry] = {}
        self._background: Set[asyncio.Task] = set()

    def is_active(self, db: DocumentStore) -> bool:
        return db in self._registries

    def active_replications(self, db: DocumentStore) -> Dict[str, str]:
        """Map of document id to replication id for the jobs running on ``db``."""
        registry = self._registry_for(db)
        return {doc_id: task.replication_id for doc_id, task in registry.tasks.items()}

    async def start(self, db: DocumentStore) -> None:
        """
        Start replicating for every document in ``db`` and follow its changes.

        Raises:
            AlreadyActiveError: If the replicator already runs on ``db``
        """
        if self.is_active(db):
            raise AlreadyActiveError()
        try:
            self.validation.install_strict(db)
        except ValidationAlreadyInstalledError as e:
            raise AlreadyActiveError() from e

        registry = Registry()
        self._registries[db] = registry
        logger.info(f"Starting replicator on {db!r}")

        try:
            await self._ensure_design_document(db)

            # Subscribe before the scan so the echoes of its write-backs, and
            # edits made while it runs, are buffered for the feed consumer.
            registry.feed = db.changes(since="now", live=True, include_docs=True)

            all_docs = await db.all_docs(include_docs=True)
            rows = [row for row in all_docs.get("rows", []) if row.get("doc")]
            for row in rows:
                await self._on_changed(db, row["doc"])

            registry.feed_task = asyncio.create_task(self._follow_changes(db, registry.feed))
        except BaseException:
            logger.error(f"Replicator failed to start on {db!r}", exc_info=True)
            self._registries.pop(db, None)
            await self._cancel_all(registry)
            self.validation.uninstall_strict(db)
            raise

        logger.info(f"Replicator started on {db!r} ({len(rows)} documents, {len(registry.tasks)} jobs)")

    async def stop(self, db: DocumentStore) -> None:
        """
        Cancel every replication and the change feed, then relax validation.

        Raises:
            AlreadyInactiveError: If the replicator does not run on ``db``
        """
        registry = self._registries.pop(db, None)
        if registry is None:
            raise AlreadyInactiveError()

        logger.info(f"Stopping replicator on {db!r} ({len(registry.tasks)} active jobs)")
        await self._cancel_all(registry)

        # Last: start() treats installed validation as "replicator running".
        self.validation.uninstall_strict(db)
        logger.info(f"Replicator stopped on {db!r}")

    async def _cancel_all(self, registry: Registry) -> None:
        """Cancel the feed and all jobs, waiting for each terminal notification."""
        feed_tasks = []
        if registry.feed is not None:
            registry.feed.cancel()
        if registry.feed_task is not None:
            feed_tasks.append(registry.feed_task)

        tasks = list(registry.tasks.values())
        registry.tasks.clear()
        registry.signatures.clear()
        for task in tasks:
            task.cancel()

        await asyncio.gather(*feed_tasks, return_exceptions=True)
        await asyncio.gather(*(task.join() for task in tasks))

    async def _ensure_design_document(self, db: DocumentStore) -> None:
        try:
            await db.put(design_document(), user_ctx={"roles": list(REPLICATOR_ROLES)})
        except Exception as e:
            if not is_conflict(e):
                raise
            logger.debug(f"Design document already present in {db!r}")

    async def _follow_changes(self, db: DocumentStore, feed: ChangeFeed) -> None:
        try:
            async for change in feed:
                doc = dict(change.get("doc") or {ID_FIELD: change["id"]})
                if change.get("deleted"):
                    doc[DELETED_FIELD] = True
                try:
                    await self._on_changed(db, doc)
                except DatabaseNotActiveError:
                    return
                except Exception as e:
                    logger.error(f"Failed to reconcile {doc.get(ID_FIELD)}: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Change feed of {db!r} failed: {e}", exc_info=True)

    def _registry_for(self, db: DocumentStore) -> Registry:
        registry = self._registries.get(db)
        if registry is None:
            raise DatabaseNotActiveError(f"Replicator is not active on {db!r}")
        return registry

    async def _on_changed(self, db: DocumentStore, doc: Dict[str, Any]) -> None:
        """
        Bring the replication described by ``doc`` in line with it.

        Args:
            db: Control database
            doc: Document as reported by the change feed or the initial scan
        """
        registry = self._registry_for(db)
        doc_id = doc[ID_FIELD]

        if registry.self_writes.consume(doc_id):
            logger.debug(f"Ignoring own write to {doc_id}")
            return
        if doc_id.startswith(DESIGN_DOC_PREFIX):
            return

        original = copy.deepcopy(doc)

        previous = registry.release(doc_id)
        if previous is not None:
            logger.info(f"Cancelling replication {previous.replication_id} for {doc_id}")
            previous.cancel()

        signature = None
        task = None
        if not doc.get(DELETED_FIELD):
            signature = compute_signature(doc)
            replication_id = find_matching_replication_id(registry.signatures, signature)
            if replication_id is not None:
                logger.info(f"{doc_id} duplicates running replication {replication_id}")
                doc[REPLICATION_ID_FIELD] = replication_id
            else:
                doc[REPLICATION_ID_FIELD] = uuid.uuid4().hex
                doc[REPLICATION_STATE_FIELD] = ReplicationState.TRIGGERED.value
                task = ReplicationTask(
                    self.engine,
                    doc_id=doc_id,
                    replication_id=doc[REPLICATION_ID_FIELD],
                    source=doc.get(SOURCE_FIELD),
                    target=doc.get(TARGET_FIELD),
                    options=replication_options(doc),
                )
                registry.register(task, signature)
                self._spawn(self._watch(db, task))
                logger.info(f"Triggered replication {task.replication_id} for {doc_id}")

        if doc == original:
            return
        try:
            await self._put_as_replicator(db, doc)
        except Exception as e:
            if not is_conflict(e):
                raise
            logger.debug(f"Conflict writing {doc_id} while reconciling, re-applying to the latest revision")
            await self._reapply_reconciliation(db, doc_id, signature, doc[REPLICATION_ID_FIELD], task)

    async def _reapply_reconciliation(
        self,
        db: DocumentStore,
        doc_id: str,
        signature: Signature,
        replication_id: str,
        task: Optional[ReplicationTask]
    ) -> None:
        """
        Write a reconciliation's controller fields onto the latest revision.

        Skipped when the user-owned fields changed in between: that edit is
        reconciled by its own change event.
        """
        registry = self._registry_for(db)

        def reapply(latest: Dict[str, Any]) -> bool:
            if compute_signature(latest) != signature:
                return False
            if task is not None:
                if not registry.owns(task):
                    return False
                latest[REPLICATION_STATE_FIELD] = ReplicationState.TRIGGERED.value
            elif registry.signatures.get(replication_id) != signature:
                return False
            latest[REPLICATION_ID_FIELD] = replication_id
            return True

        try:
            await self._update_existing_doc(db, doc_id, reapply)
        except DocumentNotFoundError:
            logger.debug(f"{doc_id} was deleted while reconciling")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _watch(self, db: DocumentStore, task: ReplicationTask) -> None:
        """Report the terminal outcome of ``task`` into its document."""
        outcome = await task.join()
        if outcome.cancelled:
            return

        registry = self._registries.get(db)
        if registry is None or not registry.owns(task):
            logger.debug(f"Dropping outcome of superseded replication {task.replication_id}")
            return
        registry.release(task.doc_id)

        if outcome.state == COMPLETED:
            logger.info(f"Replication {task.replication_id} for {task.doc_id} completed")
        else:
            logger.warning(f"Replication {task.replication_id} for {task.doc_id} failed: {outcome.reason}")

        try:
            await self._update_existing_doc(db, task.doc_id, _outcome_mutator(outcome))
        except (DatabaseNotActiveError, DocumentNotFoundError) as e:
            logger.info(f"Not recording outcome of {task.replication_id}: {e}")
        except Exception as e:
            logger.error(f"Failed to record outcome of {task.replication_id}: {e}", exc_info=True)

    async def _update_existing_doc(
        self,
        db: DocumentStore,
        doc_id: str,
        mutate: Callable[[Dict[str, Any]], bool]
    ) -> None:
        """
        Re-fetch ``doc_id``, apply ``mutate`` and write it back.

        The whole sequence is retried against the latest revision on conflict.
        Nothing is written once ``mutate`` returns False.
        """
        for attempt in range(MAX_WRITE_RETRIES):
            doc = await db.get(doc_id)
            if not mutate(doc):
                return
            try:
                await self._put_as_replicator(db, doc)
                return
            except Exception as e:
                if not is_conflict(e):
                    raise
                logger.debug(f"Conflict writing {doc_id} (attempt {attempt + 1}/{MAX_WRITE_RETRIES}), retrying")

        logger.error(f"Gave up writing {doc_id} after {MAX_WRITE_RETRIES} conflicting attempts")

    async def _put_as_replicator(self, db: DocumentStore, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Persist ``doc`` with replicator privileges, marked as a self-write."""
        if doc.get(REPLICATION_STATE_FIELD):
            doc[REPLICATION_STATE_TIME_FIELD] = datetime.now(timezone.utc).isoformat()

        registry = self._registry_for(db)
        doc_id = doc[ID_FIELD]
        registry.self_writes.mark(doc_id)
        try:
            return await db.put(doc, user_ctx={"roles": list(REPLICATOR_ROLES)})
        except BaseException:
            registry.self_writes.unmark(doc_id)
            raise


def _outcome_mutator(outcome: TaskOutcome) -> Callable[[Dict[str, Any]], bool]:
    def mutate(doc: Dict[str, Any]) -> bool:
        if outcome.state == COMPLETED:
            doc[REPLICATION_STATE_FIELD] = ReplicationState.COMPLETED.value
            doc[REPLICATION_STATS_FIELD] = dict(outcome.stats)
        else:
            doc[REPLICATION_STATE_FIELD] = ReplicationState.ERROR.value
            doc[REPLICATION_STATE_REASON_FIELD] = outcome.reason
        return True
    return mutate
