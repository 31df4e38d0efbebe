"""Transition-table state machine base.

A machine wraps one entity exposing ``state`` and ``record_id``. Subclasses
declare TRANSITIONS as (state, event) -> new state; pairs missing from the
table are rejected with InvalidTransitionError before anything changes.
"""

import logging
from enum import Enum
from typing import Any, ClassVar

from opentelemetry import metrics

logger = logging.getLogger(__name__)

meter = metrics.get_meter("certvault.state_machines")

state_transitions_total = meter.create_counter(
    name="certvault_state_transitions_total",
    description="Lifecycle state transitions by from/to state and event",
    unit="1",
)


class InvalidTransitionError(Exception):
    """Raised when an event is not allowed in the current state."""

    def __init__(self, entity_id: str, current_state: str, event: str):
        self.entity_id = entity_id
        self.current_state = current_state
        self.event = event
        super().__init__(f"{entity_id} is {current_state}; {event} is not allowed")


class StateMachine:
    TRANSITIONS: ClassVar[dict[tuple[Any, Any], Any]] = {}

    def __init__(self, entity: Any):
        self.entity = entity

    def can_transition(self, event: Enum) -> bool:
        return (self.entity.state, event) in self.TRANSITIONS

    def require(self, event: Enum) -> Enum:
        """Return the state event leads to, raising if the table has no entry."""
        current = self.entity.state
        target = self.TRANSITIONS.get((current, event))
        if target is None:
            logger.warning(
                "invalid_transition_attempted",
                extra={
                    "entity_id": self.entity.record_id,
                    "current_state": current.value,
                    "event": event.value,
                },
            )
            raise InvalidTransitionError(self.entity.record_id, current.value, event.value)
        return target

    def transition(self, event: Enum) -> Enum:
        previous = self.entity.state
        self.entity.state = self.require(event)

        labels = {
            "from_state": previous.value,
            "to_state": self.entity.state.value,
            "event": event.value,
        }
        state_transitions_total.add(1, labels)
        logger.info("state_transition", extra={"entity_id": self.entity.record_id, **labels})
        return self.entity.state
