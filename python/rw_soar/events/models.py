"""Domain event envelope published on the event bus."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerType(str, Enum):
    """Event categories a playbook can be triggered by."""

    ALERT = "alert"
    INCIDENT = "incident"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


# Well-known event types
ALERT_CREATED = "alert.created"
ALERT_UPDATED = "alert.updated"
INCIDENT_CREATED = "incident.created"
INCIDENT_UPDATED = "incident.updated"
PLAYBOOK_MANUAL = "manual.run"
PLAYBOOK_SCHEDULED = "scheduled.tick"

_TRIGGER_VALUES = {t.value for t in TriggerType}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """An immutable domain event.

    ``data`` is an arbitrary JSON-serializable mapping; the bus enforces no
    schema beyond this envelope.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str = Field(description="Event type such as 'alert.created'")
    entity_type: str = Field(alias="entityType")
    entity_id: str = Field(alias="entityId")
    organization_id: str = Field(alias="organizationId")
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("entity_id", "organization_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        """Numeric ids from relational sources are carried as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def category(self) -> TriggerType | None:
        """Trigger category of the event.

        The prefix of ``type`` wins (``alert.created`` -> ``alert``); otherwise
        ``entity_type`` is used when it names a category.
        """
        prefix = self.type.split(".", 1)[0]
        if prefix in _TRIGGER_VALUES:
            return TriggerType(prefix)
        if self.entity_type in _TRIGGER_VALUES:
            return TriggerType(self.entity_type)
        return None

    def to_payload(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary using wire field names."""
        return {
            "id": self.id,
            "type": self.type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "organizationId": self.organization_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }
