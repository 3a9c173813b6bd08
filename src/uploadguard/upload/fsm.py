"""Upload lifecycle finite state machine.

Each upload run gets its own FSM instance.  The orchestrator fires an
event at every phase boundary; an illegal transition raises
``statemachine.exceptions.TransitionNotAllowed`` instead of silently
moving the upload into an inconsistent state.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from uploadguard.models import UploadSession


class UploadLifecycleSM(StateMachine):
    """Seven-state lifecycle of one upload.

    States:
        planning     -- Validating the source and computing the part plan.
        initiating   -- "Create upload" call in flight.
        transmitting -- Sending the payload or its parts.
        completing   -- "Complete upload" call in flight (multi-part only).
        completed    -- The API finalized the upload.
        failed       -- A phase failed terminally.
        cancelled    -- The caller cancelled the upload.

    Leaving ``transmitting`` for ``completing`` or ``completed`` requires
    every planned part to be acknowledged on the attached session.
    """

    planning = State("planning", initial=True, value="planning")
    initiating = State("initiating", value="initiating")
    transmitting = State("transmitting", value="transmitting")
    completing = State("completing", value="completing")
    completed = State("completed", final=True, value="completed")
    failed = State("failed", final=True, value="failed")
    cancelled = State("cancelled", final=True, value="cancelled")

    planned = planning.to(initiating)
    initiated = initiating.to(transmitting)
    parts_sent = transmitting.to(completing, cond="all_parts_acknowledged")
    single_part_sent = transmitting.to(completed, cond="all_parts_acknowledged")
    finalized = completing.to(completed)
    fail = (
        planning.to(failed)
        | initiating.to(failed)
        | transmitting.to(failed)
        | completing.to(failed)
    )
    cancel = transmitting.to(cancelled) | completing.to(cancelled)

    def __init__(self) -> None:
        self.session: UploadSession | None = None
        super().__init__()

    def all_parts_acknowledged(self) -> bool:
        return self.session is not None and self.session.is_fully_acknowledged

    @property
    def state_name(self) -> str:
        return self.current_state.value

    @property
    def is_terminal(self) -> bool:
        return self.current_state.final
