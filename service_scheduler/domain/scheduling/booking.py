"""
Appointment booking and rescheduling.

The conflict check and the writes it guards run in one transaction with the
affected provider rows locked, so two overlapping bookings for the same
provider cannot both commit.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import APPOINTMENT_NUMBER_PREFIX, BOOKING_TIMEOUT_SECONDS
from ...models import (
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AssignmentRole,
    AssignmentStatus,
    ServiceType,
)
from .assignments import AssignmentManager
from .conflicts import conflict_summary
from .errors import ConflictError, NotFoundError, StateTransitionError, ValidationError
from .events import APPOINTMENT_CREATED, APPOINTMENT_STATUS_CHANGED, AppointmentEvent
from .repository import SchedulingRepository
from .state_machine import AppointmentStateMachine
from .transaction import atomic

logger = logging.getLogger(__name__)


def generate_appointment_number() -> str:
    return f"{APPOINTMENT_NUMBER_PREFIX}-{uuid.uuid4().hex[:8].upper()}"


def validate_interval(
    start: datetime, end: datetime, service_type: ServiceType, duration_override: bool = False
) -> int:
    """Check an interval against a service type; returns its length in minutes"""
    if start is None or end is None:
        raise ValidationError("Both start and end are required")
    if start.tzinfo is None or end.tzinfo is None:
        raise ValidationError("Start and end must include a timezone offset")
    if end <= start:
        raise ValidationError(
            "Appointment end must be after its start",
            {"start": start.isoformat(), "end": end.isoformat()},
        )
    length = end - start
    if not duration_override and length != timedelta(minutes=service_type.duration_minutes):
        raise ValidationError(
            f"Duration must be {service_type.duration_minutes} minutes for this service type",
            {
                "expected_minutes": service_type.duration_minutes,
                "requested_minutes": int(length.total_seconds() // 60),
            },
        )
    return int(length.total_seconds() // 60)


class AppointmentBookingService:
    """Creates and moves appointments with a commit-time conflict check"""

    def __init__(self, db: Session, state_machine: Optional[AppointmentStateMachine] = None):
        self.db = db
        self.repo = SchedulingRepository()
        self.assignments = AssignmentManager(db)
        self.state_machine = state_machine or AppointmentStateMachine()
        self.pending_events: list[AppointmentEvent] = []

    def book(
        self,
        tenant_id: str,
        order_id: Optional[str],
        service_type_id: int,
        start: datetime,
        end: datetime,
        address: dict,
        preferred_provider_id: Optional[int] = None,
        actor_id: Optional[str] = None,
        duration_override: bool = False,
        timeout: Optional[float] = None,
        **details,
    ) -> Appointment:
        """
        Create an appointment in ``scheduled`` status.

        With a preferred provider, the provider row is locked and re-checked
        for overlapping committed appointments before the insert; on overlap
        a ConflictError lists them. The appointment, its primary assignment
        and the initial history entry commit together or not at all.

        Extra keyword arguments (title, description, priority, contact_person,
        contact_phone, contact_email, special_instructions, timezone) are
        stored on the appointment.
        """
        with atomic(self.db, timeout or BOOKING_TIMEOUT_SECONDS):
            service_type = self.repo.get_service_type(self.db, tenant_id, service_type_id)
            if not service_type:
                raise NotFoundError(f"Service type {service_type_id} not found")
            if not service_type.is_active:
                raise ValidationError(f"Service type {service_type_id} is not active")
            if service_type.requires_order and not order_id:
                raise ValidationError("An order reference is required for this service type")
            if not address:
                raise ValidationError("A service address is required")

            minutes = validate_interval(start, end, service_type, duration_override)
            try:
                priority = AppointmentPriority(details.pop("priority", None) or AppointmentPriority.NORMAL)
            except ValueError:
                raise ValidationError(
                    "Invalid priority",
                    {"allowed": [p.value for p in AppointmentPriority]},
                )

            provider = None
            if preferred_provider_id is not None:
                locked = self.repo.lock_providers(self.db, tenant_id, [preferred_provider_id])
                if not locked:
                    raise NotFoundError(f"Provider {preferred_provider_id} not found")
                provider = locked[0]
                if not provider.is_active:
                    raise ValidationError(f"Provider {preferred_provider_id} is not active")

                overlapping = self.repo.committed_appointments_for_provider(
                    self.db, provider.id, start, end
                )
                if overlapping:
                    logger.warning(
                        f"⚠️ Booking rejected: provider {provider.id} has "
                        f"{len(overlapping)} overlapping appointment(s)"
                    )
                    raise ConflictError(
                        "Provider is not available at the requested time",
                        [conflict_summary(a, provider.id) for a in overlapping],
                    )

            appointment = Appointment(
                tenant_id=tenant_id,
                appointment_number=generate_appointment_number(),
                order_id=order_id,
                service_type_id=service_type.id,
                title=details.pop("title", None) or service_type.name,
                priority=priority.value,
                scheduled_start=start,
                scheduled_end=end,
                estimated_duration=minutes,
                service_address=address,
                status=AppointmentStatus.SCHEDULED.value,
                created_by=actor_id,
                **{k: v for k, v in details.items() if v is not None},
            )
            self.db.add(appointment)
            self.db.flush()

            if provider is not None:
                self.assignments.assign(
                    appointment, provider, AssignmentRole.PRIMARY, check_conflicts=False
                )

            record = self.state_machine.initial(
                performed_by=actor_id,
                details={
                    "scheduled_start": start.isoformat(),
                    "scheduled_end": end.isoformat(),
                    "provider_id": preferred_provider_id,
                },
            )
            self.repo.add_history(self.db, record.to_history(tenant_id, appointment.id))

        logger.info(
            f"✅ Appointment {appointment.appointment_number} booked for "
            f"{start.isoformat()} (provider={preferred_provider_id})"
        )
        self.pending_events.append(
            AppointmentEvent(
                name=APPOINTMENT_CREATED,
                tenant_id=tenant_id,
                appointment_id=appointment.id,
                appointment_number=appointment.appointment_number,
                new_status=appointment.status,
                action=record.action,
                actor_id=actor_id,
            )
        )
        return appointment

    def reschedule(
        self,
        tenant_id: str,
        appointment_id: int,
        new_start: datetime,
        new_end: datetime,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        duration_override: bool = False,
        timeout: Optional[float] = None,
    ) -> Appointment:
        """
        Move an appointment to a new interval and put it back in ``scheduled``.

        Every provider still holding the appointment is re-checked against
        their other committed appointments; the appointment's own current
        interval is excluded.
        """
        with atomic(self.db, timeout or BOOKING_TIMEOUT_SECONDS):
            appointment = self.repo.get_appointment(self.db, tenant_id, appointment_id)
            if not appointment:
                raise NotFoundError(f"Appointment {appointment_id} not found")

            previous_status = AppointmentStatus(appointment.status)
            if not self.state_machine.can_transition(previous_status, AppointmentStatus.RESCHEDULED):
                raise StateTransitionError(previous_status.value, AppointmentStatus.RESCHEDULED.value)

            validate_interval(new_start, new_end, appointment.service_type, duration_override)

            provider_ids = sorted(
                a.provider_id
                for a in appointment.assignments
                if a.status != AssignmentStatus.DECLINED.value
            )
            self.repo.lock_providers(self.db, tenant_id, provider_ids)

            conflicts = []
            for provider_id in provider_ids:
                overlapping = self.repo.committed_appointments_for_provider(
                    self.db, provider_id, new_start, new_end, exclude_appointment_id=appointment.id
                )
                conflicts.extend(conflict_summary(a, provider_id) for a in overlapping)
            if conflicts:
                logger.warning(
                    f"⚠️ Reschedule of appointment {appointment.id} rejected: "
                    f"{len(conflicts)} conflict(s)"
                )
                raise ConflictError("Provider is not available at the requested time", conflicts)

            record = self.state_machine.reschedule(
                previous_status,
                performed_by=actor_id,
                reason=reason,
                details={
                    "previous": {
                        "scheduled_start": appointment.scheduled_start.isoformat(),
                        "scheduled_end": appointment.scheduled_end.isoformat(),
                    },
                    "new": {
                        "scheduled_start": new_start.isoformat(),
                        "scheduled_end": new_end.isoformat(),
                    },
                },
            )
            appointment.scheduled_start = new_start
            appointment.scheduled_end = new_end
            appointment.estimated_duration = int((new_end - new_start).total_seconds() // 60)
            appointment.status = record.new_status.value
            self.repo.add_history(self.db, record.to_history(tenant_id, appointment.id))

        logger.info(
            f"✅ Appointment {appointment.appointment_number} rescheduled to {new_start.isoformat()}"
        )
        self.pending_events.append(
            AppointmentEvent(
                name=APPOINTMENT_STATUS_CHANGED,
                tenant_id=tenant_id,
                appointment_id=appointment.id,
                appointment_number=appointment.appointment_number,
                previous_status=previous_status.value,
                new_status=appointment.status,
                action=record.action,
                actor_id=actor_id,
            )
        )
        return appointment

    def drain_events(self) -> list[AppointmentEvent]:
        events, self.pending_events = self.pending_events, []
        return events
