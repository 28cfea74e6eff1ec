"""
Replicator database controller.

Documents in a control database describe desired replications; the
Replicator starts, deduplicates and cancels jobs to match them and records
each job's outcome in its document.
"""

from replicator.exceptions import (
    AlreadyActiveError,
    AlreadyInactiveError,
    ReplicatorError,
    RevisionConflictError,
)
from replicator.lifecycle import Replicator
from replicator.task_handle import ReplicationEngine
from replicator.validation import StrictValidation, ValidationService

__all__ = [
    "Replicator",
    "ReplicationEngine",
    "ValidationService",
    "StrictValidation",
    "ReplicatorError",
    "AlreadyActiveError",
    "AlreadyInactiveError",
    "RevisionConflictError",
]
