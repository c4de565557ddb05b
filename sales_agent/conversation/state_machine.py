"""
Finite state machine for one turn of tool-augmented processing.

The tool loop never infers its phase from loop position: every model
response is classified into a trigger and applied here, so the normal
exit, the stall-correction path and the iteration-limit exit are all
explicit and independently testable.

Usage:
    sm = ProcessingStateMachine()
    sm.transition(ProcessingTrigger.TOOL_CALLS_RECEIVED)
    assert sm.current_state == ProcessingState.GATHERING_DATA
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    """Phases of a single turn."""
    ANALYZING = "analyzing"
    GATHERING_DATA = "gathering_data"
    READY_TO_RESPOND = "ready_to_respond"
    ITERATION_LIMIT = "iteration_limit"


class ProcessingTrigger(str, Enum):
    """Classified model responses and loop events."""
    TOOL_CALLS_RECEIVED = "tool_calls_received"
    STALL_DETECTED = "stall_detected"
    FINAL_ANSWER_RECEIVED = "final_answer_received"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: ProcessingState
    to_state: ProcessingState
    trigger: ProcessingTrigger
    guard: Optional[Callable[[], bool]] = None


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: ProcessingState
    entered_at: datetime
    trigger: Optional[ProcessingTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class ProcessingStateMachine:
    """
    Deterministic phase tracking for the tool loop.

    ANALYZING and GATHERING_DATA loop on stalls (a corrective instruction
    was appended) and move forward on tool calls. Both terminal states are
    reachable from either working state.
    """

    TRANSITIONS: list[Transition] = [
        # --- First model response ---
        Transition(ProcessingState.ANALYZING, ProcessingState.GATHERING_DATA,
                   ProcessingTrigger.TOOL_CALLS_RECEIVED),
        Transition(ProcessingState.ANALYZING, ProcessingState.ANALYZING,
                   ProcessingTrigger.STALL_DETECTED),
        Transition(ProcessingState.ANALYZING, ProcessingState.READY_TO_RESPOND,
                   ProcessingTrigger.FINAL_ANSWER_RECEIVED),
        Transition(ProcessingState.ANALYZING, ProcessingState.ITERATION_LIMIT,
                   ProcessingTrigger.ITERATION_LIMIT_REACHED),

        # --- Data gathering ---
        Transition(ProcessingState.GATHERING_DATA, ProcessingState.GATHERING_DATA,
                   ProcessingTrigger.TOOL_CALLS_RECEIVED),
        Transition(ProcessingState.GATHERING_DATA, ProcessingState.GATHERING_DATA,
                   ProcessingTrigger.STALL_DETECTED),
        Transition(ProcessingState.GATHERING_DATA, ProcessingState.READY_TO_RESPOND,
                   ProcessingTrigger.FINAL_ANSWER_RECEIVED),
        Transition(ProcessingState.GATHERING_DATA, ProcessingState.ITERATION_LIMIT,
                   ProcessingTrigger.ITERATION_LIMIT_REACHED),
    ]

    TERMINAL_STATES = frozenset({ProcessingState.READY_TO_RESPOND, ProcessingState.ITERATION_LIMIT})

    def __init__(self) -> None:
        self._current_state = ProcessingState.ANALYZING
        self._history: list[StateEntry] = [
            StateEntry(state=ProcessingState.ANALYZING, entered_at=datetime.now(timezone.utc))
        ]
        self._stall_count: int = 0

    @property
    def current_state(self) -> ProcessingState:
        return self._current_state

    @property
    def stall_count(self) -> int:
        return self._stall_count

    @property
    def degraded(self) -> bool:
        """True when the turn ended because the iteration cap was hit."""
        return self._current_state == ProcessingState.ITERATION_LIMIT

    def transition(self, trigger: ProcessingTrigger) -> ProcessingState:
        """
        Execute a state transition.

        Args:
            trigger: The event triggering the transition.

        Returns:
            The new processing state.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                if t.guard is not None and not t.guard():
                    continue

                old_state = self._current_state
                self._current_state = t.to_state

                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))

                if trigger == ProcessingTrigger.STALL_DETECTED:
                    self._stall_count += 1

                logger.debug(
                    "Processing transition: %s -> %s (trigger: %s)",
                    old_state.value, self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[ProcessingTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_history(self) -> list[StateEntry]:
        """Return the full state transition history."""
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_terminal(self) -> bool:
        return self._current_state in self.TERMINAL_STATES
