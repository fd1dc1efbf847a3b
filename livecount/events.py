"""Lifecycle event schemas.

LifecycleEvent is the contract between the host persistence layer and the
dispatcher: one committed create/update/destroy of a tracked entity.
DeferredJob is what travels through a deferral facility to a worker.
"""

from datetime import datetime
from typing import Any, Dict
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from livecount.definitions import Lifecycle


class LifecycleEvent(BaseModel):
    """A committed lifecycle transition of a tracked entity.

    Attributes:
        event_id: Unique identifier for this notification
        entity_type: Entity type name (e.g. 'User')
        lifecycle: create / update / destroy
        attributes: Flat attribute snapshot; must contain 'id' and 'created_at'
        changes: What changed, present on genuine update events only
        timestamp: Notification timestamp (UTC)
    """
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    entity_type: str
    lifecycle: Lifecycle
    attributes: Dict[str, Any]
    changes: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("lifecycle", mode="before")
    @classmethod
    def parse_lifecycle(cls, v):
        return Lifecycle.coerce(v)

    @field_validator("attributes")
    @classmethod
    def require_identity(cls, v):
        missing = [name for name in ("id", "created_at") if v.get(name) is None]
        if missing:
            raise ValueError(f"attribute snapshot is missing {', '.join(missing)}")
        return v

    @field_validator("changes", mode="before")
    @classmethod
    def default_changes(cls, v):
        return v or {}


class DeferredJob(BaseModel):
    """One counter execution handed to a deferral facility.

    JSON-serializable so external task queues can carry it verbatim.
    """
    counter: str
    event: LifecycleEvent
    attempt: int = 1
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def load(cls, payload: Any) -> "DeferredJob":
        """Accept a DeferredJob, its dict form, or its JSON form"""
        if isinstance(payload, cls):
            return payload
        if isinstance(payload, (str, bytes)):
            return cls.model_validate_json(payload)
        return cls.model_validate(payload)

