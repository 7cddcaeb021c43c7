"""Provider assignments for appointments"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    AppointmentAssignment,
    AssignmentRole,
    AssignmentStatus,
    ServiceProvider,
    utcnow,
)
from .conflicts import conflict_summary
from .errors import ConflictError, NotFoundError, ValidationError
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)

ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.ASSIGNED: {AssignmentStatus.CONFIRMED, AssignmentStatus.DECLINED},
    AssignmentStatus.CONFIRMED: {AssignmentStatus.COMPLETED, AssignmentStatus.DECLINED},
    AssignmentStatus.DECLINED: set(),
    AssignmentStatus.COMPLETED: set(),
}


class AssignmentManager:
    """
    Links appointments to providers.

    Works inside the caller's unit of work: it flushes but never commits, so
    a booking can create the appointment and its primary assignment atomically.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def assign(
        self,
        appointment: Appointment,
        provider: ServiceProvider,
        role: AssignmentRole = AssignmentRole.PRIMARY,
        notes: Optional[str] = None,
        check_conflicts: bool = True,
    ) -> AppointmentAssignment:
        role = AssignmentRole(role)

        if self.repo.get_assignment(self.db, appointment.id, provider.id):
            raise ConflictError(
                f"Provider {provider.id} is already assigned to appointment {appointment.id}"
            )

        if role == AssignmentRole.PRIMARY and appointment.primary_assignment is not None:
            raise ValidationError(
                f"Appointment {appointment.id} already has a primary provider",
                {"primary_provider_id": appointment.primary_assignment.provider_id},
            )

        # Every role occupies the provider for the appointment's interval
        overlapping = []
        if check_conflicts:
            overlapping = self.repo.committed_appointments_for_provider(
                self.db,
                provider.id,
                appointment.scheduled_start,
                appointment.scheduled_end,
                exclude_appointment_id=appointment.id,
            )
        if overlapping:
            logger.warning(
                f"⚠️ Provider {provider.id} busy for appointment {appointment.id}: "
                f"{len(overlapping)} overlapping appointment(s)"
            )
            raise ConflictError(
                "Provider is not available at the requested time",
                [conflict_summary(a, provider.id) for a in overlapping],
            )

        assignment = AppointmentAssignment(
            tenant_id=appointment.tenant_id,
            provider_id=provider.id,
            role=role.value,
            status=AssignmentStatus.ASSIGNED.value,
            notes=notes,
        )
        appointment.assignments.append(assignment)
        self.db.flush()
        logger.info(
            f"✅ Provider {provider.id} assigned to appointment {appointment.id} as {role.value}"
        )
        return assignment

    def unassign(self, appointment: Appointment, provider_id: int) -> AppointmentAssignment:
        """Remove a provider; removing the last one leaves the appointment unstaffed"""
        assignment = self.repo.get_assignment(self.db, appointment.id, provider_id)
        if not assignment:
            raise NotFoundError(
                f"Provider {provider_id} is not assigned to appointment {appointment.id}"
            )
        appointment.assignments.remove(assignment)
        self.db.flush()
        if not appointment.assignments:
            logger.warning(f"⚠️ Appointment {appointment.id} has no assigned providers")
        return assignment

    def list_assignments(self, appointment_id: int) -> list[AppointmentAssignment]:
        return self.repo.list_assignments(self.db, appointment_id)

    def respond(
        self, appointment: Appointment, provider_id: int, status: AssignmentStatus
    ) -> AppointmentAssignment:
        """Move an assignment through assigned → confirmed → completed, or decline it"""
        status = AssignmentStatus(status)
        assignment = self.repo.get_assignment(self.db, appointment.id, provider_id)
        if not assignment:
            raise NotFoundError(
                f"Provider {provider_id} is not assigned to appointment {appointment.id}"
            )
        current = AssignmentStatus(assignment.status)
        if status not in ASSIGNMENT_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change assignment status from '{current.value}' to '{status.value}'",
                {"current_status": current.value, "target_status": status.value},
            )
        assignment.status = status.value
        if status == AssignmentStatus.CONFIRMED:
            assignment.confirmed_at = utcnow()
        self.db.flush()
        return assignment

    def complete_all(self, appointment: Appointment) -> None:
        for assignment in appointment.assignments:
            if assignment.status != AssignmentStatus.DECLINED.value:
                assignment.status = AssignmentStatus.COMPLETED.value
