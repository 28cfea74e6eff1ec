"""Write-enforcement rules for control documents."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from common.constants import CONTROLLER_FIELDS, DELETED_FIELD, DESIGN_DOC_PREFIX, ID_FIELD
from common.logging_config import get_logger
from replicator.config import REPLICATOR_ROLES
from replicator.exceptions import ForbiddenError, ValidationAlreadyInstalledError
from replicator.schemas import ReplicationDocument

logger = get_logger(__name__)


class ValidationService(ABC):
    """
    Toggles strict validation of control documents per database.

    Whether strict validation is installed doubles as the signal that a
    replicator is running on the database.
    """

    @abstractmethod
    def install_strict(self, db) -> None:
        """
        Raises:
            ValidationAlreadyInstalledError: If already installed for ``db``
        """
        ...

    @abstractmethod
    def uninstall_strict(self, db) -> None:
        ...

    @abstractmethod
    def is_installed(self, db) -> bool:
        ...


def is_privileged(user_ctx: Optional[Dict[str, Any]], roles: Iterable[str] = None) -> bool:
    """True if ``user_ctx`` carries one of the replicator roles."""
    if not user_ctx:
        return False
    allowed = set(roles if roles is not None else REPLICATOR_ROLES)
    return bool(allowed.intersection(user_ctx.get("roles") or []))


def validate_replication_document(
    new_doc: Dict[str, Any],
    old_doc: Optional[Dict[str, Any]],
    user_ctx: Optional[Dict[str, Any]]
) -> None:
    """
    Check a write to the control database.

    Args:
        new_doc: Document about to be stored
        old_doc: Current revision, or None for a new document
        user_ctx: Author of the write, e.g. ``{"name": ..., "roles": [...]}``

    Raises:
        ForbiddenError: If the write is not allowed
    """
    privileged = is_privileged(user_ctx)

    if str(new_doc.get(ID_FIELD, "")).startswith(DESIGN_DOC_PREFIX):
        if not privileged:
            raise ForbiddenError("Only admins may change design documents.")
        return

    if new_doc.get(DELETED_FIELD) or privileged:
        return

    old_doc = old_doc or {}
    for name in sorted(CONTROLLER_FIELDS):
        if name in new_doc and new_doc[name] != old_doc.get(name):
            raise ForbiddenError(f"Only the replicator may set the '{name}' field.")

    try:
        ReplicationDocument.model_validate(new_doc)
    except ValidationError as e:
        raise ForbiddenError(f"Invalid replication document: {e}") from e


class StrictValidation(ValidationService):
    """In-process validation service keyed by database instance."""

    def __init__(self):
        self._installed = {}

    def install_strict(self, db) -> None:
        if id(db) in self._installed:
            raise ValidationAlreadyInstalledError("Strict validation already installed on this database.")
        self._installed[id(db)] = db
        logger.debug(f"Strict validation installed on {db!r}")

    def uninstall_strict(self, db) -> None:
        self._installed.pop(id(db), None)
        logger.debug(f"Strict validation removed from {db!r}")

    def is_installed(self, db) -> bool:
        return id(db) in self._installed

    def validate(
        self,
        db,
        new_doc: Dict[str, Any],
        old_doc: Optional[Dict[str, Any]],
        user_ctx: Optional[Dict[str, Any]]
    ) -> None:
        """Apply the control-document rules if strict validation is on for ``db``."""
        if self.is_installed(db):
            validate_replication_document(new_doc, old_doc, user_ctx)
