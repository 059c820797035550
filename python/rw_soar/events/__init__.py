"""Domain events and the in-process event bus."""

from rw_soar.events.bus import WILDCARD, EventBus, EventHandler, get_event_bus
from rw_soar.events.models import (
    ALERT_CREATED,
    ALERT_UPDATED,
    INCIDENT_CREATED,
    INCIDENT_UPDATED,
    PLAYBOOK_MANUAL,
    PLAYBOOK_SCHEDULED,
    Event,
    TriggerType,
)
from rw_soar.events.sinks import EventSink, RedisStreamSink

__all__ = [
    # Bus
    "EventBus",
    "EventHandler",
    "WILDCARD",
    "get_event_bus",
    # Models
    "Event",
    "TriggerType",
    "ALERT_CREATED",
    "ALERT_UPDATED",
    "INCIDENT_CREATED",
    "INCIDENT_UPDATED",
    "PLAYBOOK_MANUAL",
    "PLAYBOOK_SCHEDULED",
    # Sinks
    "EventSink",
    "RedisStreamSink",
]
