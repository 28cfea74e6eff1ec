"""Canonical identity of a replication request, used to deduplicate jobs."""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from common.constants import (
    CONTROLLER_FIELDS,
    SOURCE_FIELD,
    STORE_FIELDS,
    TARGET_FIELD,
)


@dataclass(frozen=True)
class Signature:
    """
    Identity- and revision-stripped view of a replication document.

    Two documents with equal signatures describe the same replication and
    share one running job.
    """
    source: Any
    target: Any
    options: Dict[str, Any]


def replication_options(doc: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the user-owned fields of ``doc`` other than source and target."""
    excluded = STORE_FIELDS | CONTROLLER_FIELDS | {SOURCE_FIELD, TARGET_FIELD}
    return {key: value for key, value in doc.items() if key not in excluded}


def compute_signature(doc: Mapping[str, Any]) -> Signature:
    return Signature(
        source=doc.get(SOURCE_FIELD),
        target=doc.get(TARGET_FIELD),
        options=replication_options(doc),
    )


def find_matching_replication_id(
    signatures: Mapping[str, Signature],
    signature: Signature
) -> Optional[str]:
    """
    Find a running replication whose signature equals ``signature``.

    Args:
        signatures: Mapping of replication_id to the signature that started it
        signature: Signature of the document being reconciled

    Returns:
        The first matching replication_id, or None
    """
    for replication_id, candidate in signatures.items():
        if candidate == signature:
            return replication_id
    return None
