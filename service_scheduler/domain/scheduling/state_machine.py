"""
Appointment status transitions.

    scheduled → confirmed → in_progress → completed
    scheduled | confirmed | in_progress → cancelled
    scheduled | confirmed → rescheduled → scheduled

``completed`` and ``cancelled`` are terminal. Each accepted transition
produces exactly one immutable TransitionRecord, which the caller persists
as a history row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ...models import AppointmentHistory, AppointmentStatus, utcnow
from .errors import StateTransitionError

logger = logging.getLogger(__name__)

S = AppointmentStatus

VALID_TRANSITIONS: dict[AppointmentStatus, frozenset] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED, S.RESCHEDULED}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.CANCELLED, S.RESCHEDULED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

# History action recorded for each target status
ACTIONS = {
    S.SCHEDULED: "scheduled",
    S.CONFIRMED: "confirmed",
    S.IN_PROGRESS: "started",
    S.COMPLETED: "completed",
    S.CANCELLED: "cancelled",
    S.RESCHEDULED: "rescheduled",
}


@dataclass(frozen=True)
class TransitionRecord:
    action: str
    previous_status: Optional[AppointmentStatus]
    new_status: AppointmentStatus
    performed_by: Optional[str] = None
    reason: Optional[str] = None
    details: dict = field(default_factory=dict)
    performed_at: datetime = field(default_factory=utcnow)

    def to_history(self, tenant_id: str, appointment_id: int) -> AppointmentHistory:
        return AppointmentHistory(
            tenant_id=tenant_id,
            appointment_id=appointment_id,
            action=self.action,
            previous_status=self.previous_status.value if self.previous_status else None,
            new_status=self.new_status.value,
            details=self.details or None,
            reason=self.reason,
            performed_by=self.performed_by,
            performed_at=self.performed_at,
        )


class AppointmentStateMachine:
    """Validates status changes against VALID_TRANSITIONS"""

    @staticmethod
    def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
        return S(target) in VALID_TRANSITIONS.get(S(current), frozenset())

    @staticmethod
    def is_terminal(status: AppointmentStatus) -> bool:
        return S(status) in TERMINAL_STATUSES

    def transition(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> TransitionRecord:
        current, target = S(current), S(target)
        if not self.can_transition(current, target):
            logger.warning(f"⚠️ Rejected status change {current.value} → {target.value}")
            raise StateTransitionError(current.value, target.value)
        return TransitionRecord(
            action=ACTIONS[target],
            previous_status=current,
            new_status=target,
            performed_by=performed_by,
            reason=reason,
            details=details or {},
        )

    def reschedule(
        self,
        current: AppointmentStatus,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> TransitionRecord:
        """
        Pass through ``rescheduled`` back to ``scheduled`` as one recorded change.

        The record keeps the status the appointment had before the move.
        """
        current = S(current)
        self.transition(current, S.RESCHEDULED)
        self.transition(S.RESCHEDULED, S.SCHEDULED)
        return TransitionRecord(
            action=ACTIONS[S.RESCHEDULED],
            previous_status=current,
            new_status=S.SCHEDULED,
            performed_by=performed_by,
            reason=reason,
            details=details or {},
        )

    @staticmethod
    def initial(performed_by: Optional[str] = None, details: Optional[dict] = None) -> TransitionRecord:
        return TransitionRecord(
            action="created",
            previous_status=None,
            new_status=S.SCHEDULED,
            performed_by=performed_by,
            details=details or {},
        )
