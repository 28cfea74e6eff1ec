"""Pydantic schemas for control documents."""

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReplicationState(str, Enum):
    """Controller-owned lifecycle state of a replication document."""
    TRIGGERED = "triggered"
    COMPLETED = "completed"
    ERROR = "error"


Endpoint = Union[str, Dict[str, Any]]


class ReplicationDocument(BaseModel):
    """
    A document in the control database describing one desired replication.

    Fields besides the ones declared here are replication options and are
    passed through to the replication engine.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    doc_id: Optional[str] = Field(default=None, alias="_id")
    rev: Optional[str] = Field(default=None, alias="_rev")
    source: Endpoint
    target: Endpoint
    replication_id: Optional[str] = None
    replication_state: Optional[ReplicationState] = None
    replication_state_time: Optional[str] = None
    replication_state_reason: Optional[str] = None
    replication_stats: Optional[Dict[str, Any]] = None

    @field_validator("source", "target")
    @classmethod
    def endpoint_not_empty(cls, value: Endpoint) -> Endpoint:
        if not value:
            raise ValueError("endpoint must not be empty")
        return value
