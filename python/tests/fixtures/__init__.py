"""Test fixtures for Response Warden engine tests."""

from tests.fixtures.sample_data import (
    DEFAULT_ORG,
    FailingAction,
    FlakyAction,
    RecordingAction,
    SampleEvents,
    SlowAction,
    create_event,
    create_playbook,
    create_registry,
)

__all__ = [
    "DEFAULT_ORG",
    # Events
    "SampleEvents",
    "create_event",
    # Playbooks
    "create_playbook",
    # Actions
    "RecordingAction",
    "FlakyAction",
    "FailingAction",
    "SlowAction",
    "create_registry",
]
