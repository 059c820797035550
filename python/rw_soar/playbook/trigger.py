"""Selection of playbooks whose trigger matches an incoming event."""

from __future__ import annotations

import structlog

from rw_soar.events.models import Event
from rw_soar.playbook.conditions import ConditionEvaluator
from rw_soar.playbook.models import PlaybookDefinition
from rw_soar.playbook.source import PlaybookSource

logger = structlog.get_logger()


class TriggerMatcher:
    """Returns the active playbooks an event should start.

    A playbook matches when it belongs to the event's organization, is
    active, its ``trigger_type`` equals the event category, every
    ``trigger_filter`` key holds an allowed value in the event data, and its
    ``trigger_condition`` (if any) evaluates to true.
    """

    def __init__(
        self,
        source: PlaybookSource,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._source = source
        self._evaluator = evaluator or ConditionEvaluator()
        self._logger = logger.bind(component="trigger_matcher")

    async def match(self, event: Event) -> list[PlaybookDefinition]:
        """Find matching playbooks; unmatched events yield an empty list."""
        category = event.category
        if category is None:
            self._logger.debug("event_without_category", event_type=event.type)
            return []

        candidates = await self._source.list_playbooks(
            organization_id=event.organization_id,
            is_active=True,
        )

        matched = [
            definition
            for definition in candidates
            if definition.is_active
            and definition.organization_id == event.organization_id
            and definition.trigger_type == category
            and self.matches_filter(definition, event)
            and self.matches_condition(definition, event)
        ]

        self._logger.debug(
            "trigger_match_complete",
            event_type=event.type,
            category=category.value,
            candidates=len(candidates),
            matched=[d.id for d in matched],
        )
        return matched

    @staticmethod
    def matches_filter(definition: PlaybookDefinition, event: Event) -> bool:
        for key, expected in definition.trigger_filter.items():
            allowed = expected if isinstance(expected, list) else [expected]
            actual = event.data.get(key)
            if actual is None or str(actual) not in allowed:
                return False
        return True

    def matches_condition(self, definition: PlaybookDefinition, event: Event) -> bool:
        if definition.trigger_condition is None:
            return True
        return self._evaluator.evaluate(definition.trigger_condition, event.data)
