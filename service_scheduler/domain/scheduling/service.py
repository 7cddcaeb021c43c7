"""Scheduling service - Business logic behind the service appointment endpoints"""

import logging
from collections import Counter
from datetime import date, datetime
from itertools import islice
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...config import BOOKING_TIMEOUT_SECONDS, MAX_SLOTS_PER_REQUEST
from ...models import (
    Appointment,
    AppointmentAssignment,
    AppointmentHistory,
    AppointmentPriority,
    AppointmentStatus,
    AssignmentRole,
    AssignmentStatus,
    ServiceProvider,
    ServiceType,
)
from .assignments import AssignmentManager
from .booking import AppointmentBookingService
from .errors import NotFoundError, ValidationError
from .events import APPOINTMENT_STATUS_CHANGED, AppointmentEvent
from .repository import SchedulingRepository
from .schemas import AppointmentCreate, AppointmentReschedule, AppointmentUpdate
from .slots import Slot, SlotGenerator
from .state_machine import AppointmentStateMachine
from .transaction import atomic

logger = logging.getLogger(__name__)

# AppointmentUpdate field -> Appointment column
UPDATABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "priority": "priority",
    "contactPerson": "contact_person",
    "contactPhone": "contact_phone",
    "contactEmail": "contact_email",
    "specialInstructions": "special_instructions",
    "customerRating": "customer_rating",
}


class SchedulingService:
    """Service layer for appointment scheduling"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()
        self.state_machine = AppointmentStateMachine()
        self.slots = SlotGenerator(db)
        self.booking = AppointmentBookingService(db, self.state_machine)
        self.assignments = AssignmentManager(db)
        self.pending_events: list[AppointmentEvent] = []

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def list_available_slots(
        self,
        ctx: RequestContext,
        service_type_id: int,
        day: date,
        provider_id: Optional[int] = None,
        duration_override: Optional[int] = None,
        service_area: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Slot]:
        cap = min(limit or MAX_SLOTS_PER_REQUEST, MAX_SLOTS_PER_REQUEST)
        slots = self.slots.generate_slots(
            ctx.tenant_id,
            service_type_id,
            day,
            provider_id=provider_id,
            duration_override=duration_override,
            service_area=service_area,
        )
        return list(islice(slots, cap))

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create_appointment(self, ctx: RequestContext, data: AppointmentCreate) -> Appointment:
        logger.info(
            f"📥 Booking service type {data.serviceTypeId} for tenant {ctx.tenant_id} "
            f"at {data.start.isoformat()}"
        )
        return self.booking.book(
            ctx.tenant_id,
            data.orderId,
            data.serviceTypeId,
            data.start,
            data.end,
            data.address,
            preferred_provider_id=data.preferredProviderId,
            actor_id=ctx.actor_id,
            duration_override=data.durationOverride,
            title=data.title,
            description=data.description,
            priority=data.priority,
            contact_person=data.contactPerson,
            contact_phone=data.contactPhone,
            contact_email=data.contactEmail,
            special_instructions=data.specialInstructions,
            timezone=data.timezone,
        )

    def reschedule_appointment(
        self, ctx: RequestContext, appointment_id: int, data: AppointmentReschedule
    ) -> Appointment:
        return self.booking.reschedule(
            ctx.tenant_id,
            appointment_id,
            data.newStart,
            data.newEnd,
            actor_id=ctx.actor_id,
            reason=data.reason,
            duration_override=data.durationOverride,
        )

    def update_appointment(
        self, ctx: RequestContext, appointment_id: int, data: AppointmentUpdate
    ) -> Appointment:
        """
        Edit appointment details and record one `updated` history entry.

        Only fields present in the request are applied. The interval is
        never changed here; start/end must go through rescheduling so the
        conflict check runs.
        """
        changes = data.model_dump(exclude_unset=True)
        moved = sorted(k for k in ("start", "end") if k in changes)
        if moved:
            raise ValidationError(
                "Use the reschedule operation to change the appointment interval",
                {"fields": moved},
            )
        for required in ("title", "priority"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} must not be empty")

        previous, new = {}, {}
        with atomic(self.db):
            appointment = self._get_appointment(ctx, appointment_id)
            for field, value in changes.items():
                if field == "priority":
                    value = AppointmentPriority(value).value
                column = UPDATABLE_FIELDS[field]
                current = getattr(appointment, column)
                if current == value:
                    continue
                previous[field] = current
                new[field] = value
                setattr(appointment, column, value)

            if new:
                self._record(ctx, appointment, "updated", {"previous": previous, "new": new})

        if new:
            logger.info(
                f"✅ Appointment {appointment.appointment_number} updated: {', '.join(sorted(new))}"
            )
        return appointment

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def change_status(
        self,
        ctx: RequestContext,
        appointment_id: int,
        target: AppointmentStatus,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[Appointment, AppointmentHistory]:
        """Apply one transition and write its history entry in the same commit"""
        target = AppointmentStatus(target)
        if target == AppointmentStatus.RESCHEDULED:
            raise ValidationError("Use the reschedule operation to move an appointment")

        with atomic(self.db):
            appointment = self._get_appointment(ctx, appointment_id)
            previous = AppointmentStatus(appointment.status)
            record = self.state_machine.transition(
                previous,
                target,
                performed_by=ctx.actor_id,
                reason=reason,
                details={"notes": notes} if notes else None,
            )

            if target == AppointmentStatus.IN_PROGRESS:
                appointment.actual_start = record.performed_at
            elif target == AppointmentStatus.COMPLETED:
                appointment.actual_end = record.performed_at
                if appointment.actual_start:
                    elapsed = record.performed_at - appointment.actual_start
                    appointment.actual_duration = int(elapsed.total_seconds() // 60)
                self.assignments.complete_all(appointment)
            elif target == AppointmentStatus.CANCELLED:
                appointment.cancellation_reason = reason

            appointment.status = target.value
            entry = self.repo.add_history(self.db, record.to_history(ctx.tenant_id, appointment.id))

        logger.info(
            f"✅ Appointment {appointment.appointment_number}: {previous.value} → {target.value}"
        )
        self.pending_events.append(
            AppointmentEvent(
                name=APPOINTMENT_STATUS_CHANGED,
                tenant_id=ctx.tenant_id,
                appointment_id=appointment.id,
                appointment_number=appointment.appointment_number,
                previous_status=previous.value,
                new_status=target.value,
                action=record.action,
                actor_id=ctx.actor_id,
            )
        )
        return appointment, entry

    def get_history(self, ctx: RequestContext, appointment_id: int) -> list[AppointmentHistory]:
        appointment = self._get_appointment(ctx, appointment_id)
        return self.repo.get_history(self.db, appointment.id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_provider(
        self,
        ctx: RequestContext,
        appointment_id: int,
        provider_id: int,
        role: AssignmentRole = AssignmentRole.PRIMARY,
        notes: Optional[str] = None,
    ) -> AppointmentAssignment:
        role = AssignmentRole(role)
        with atomic(self.db, BOOKING_TIMEOUT_SECONDS):
            appointment = self._get_open_appointment(ctx, appointment_id)
            locked = self.repo.lock_providers(self.db, ctx.tenant_id, [provider_id])
            if not locked:
                raise NotFoundError(f"Provider {provider_id} not found")
            provider = locked[0]
            if not provider.is_active:
                raise ValidationError(f"Provider {provider_id} is not active")

            assignment = self.assignments.assign(appointment, provider, role, notes)
            self._record(
                ctx,
                appointment,
                "provider_assigned",
                {"provider_id": provider_id, "role": role.value},
            )
        return assignment

    def unassign_provider(self, ctx: RequestContext, appointment_id: int, provider_id: int) -> dict:
        with atomic(self.db):
            appointment = self._get_open_appointment(ctx, appointment_id)
            assignment = self.assignments.unassign(appointment, provider_id)
            self._record(
                ctx,
                appointment,
                "provider_unassigned",
                {"provider_id": provider_id, "role": assignment.role},
            )
        logger.info(f"✅ Provider {provider_id} unassigned from appointment {appointment_id}")
        return {"message": "Provider unassigned", "remaining": len(appointment.assignments)}

    def list_assignments(self, ctx: RequestContext, appointment_id: int) -> list[AppointmentAssignment]:
        appointment = self._get_appointment(ctx, appointment_id)
        return self.assignments.list_assignments(appointment.id)

    def respond_to_assignment(
        self,
        ctx: RequestContext,
        appointment_id: int,
        provider_id: int,
        status: AssignmentStatus,
    ) -> AppointmentAssignment:
        status = AssignmentStatus(status)
        with atomic(self.db):
            appointment = self._get_open_appointment(ctx, appointment_id)
            previous = self.repo.get_assignment(self.db, appointment.id, provider_id)
            previous_status = previous.status if previous else None
            assignment = self.assignments.respond(appointment, provider_id, status)
            self._record(
                ctx,
                appointment,
                f"assignment_{status.value}",
                {"provider_id": provider_id, "previous": previous_status, "new": status.value},
            )
        logger.info(
            f"✅ Provider {provider_id} {status.value} appointment {appointment.appointment_number}"
        )
        return assignment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_appointment(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self._get_appointment(ctx, appointment_id)

    def list_appointments(
        self, ctx: RequestContext, page: int = 1, limit: int = 20, **filters
    ) -> tuple[list[Appointment], int]:
        return self.repo.search_appointments(self.db, ctx.tenant_id, page=page, limit=limit, **filters)

    def get_analytics(
        self,
        ctx: RequestContext,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        service_type_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> dict:
        appointments = self.repo.appointments_for_analytics(
            self.db,
            ctx.tenant_id,
            start_date=start_date,
            end_date=end_date,
            service_type_id=service_type_id,
            provider_id=provider_id,
        )
        total = len(appointments)
        distribution = Counter(a.status for a in appointments)
        durations = [a.actual_duration for a in appointments if a.actual_duration is not None]
        ratings = [a.customer_rating for a in appointments if a.customer_rating is not None]

        def rate(status: AppointmentStatus) -> float:
            return round(distribution.get(status.value, 0) / total * 100, 2) if total else 0.0

        return {
            "totalAppointments": total,
            "statusDistribution": dict(distribution),
            "completionRate": rate(AppointmentStatus.COMPLETED),
            "cancellationRate": rate(AppointmentStatus.CANCELLED),
            "inProgressAppointments": distribution.get(AppointmentStatus.IN_PROGRESS.value, 0),
            "averageActualDuration": round(sum(durations) / len(durations), 2) if durations else None,
            "averageCustomerRating": round(sum(ratings) / len(ratings), 2) if ratings else None,
        }

    def list_service_types(
        self, ctx: RequestContext, category: Optional[str] = None, active_only: bool = True
    ) -> list[ServiceType]:
        return self.repo.list_service_types(self.db, ctx.tenant_id, category, active_only)

    def list_providers(
        self, ctx: RequestContext, provider_type: Optional[str] = None, active_only: bool = True
    ) -> list[ServiceProvider]:
        return self.repo.list_providers(
            self.db, ctx.tenant_id, provider_type=provider_type, active_only=active_only
        )

    def drain_events(self) -> list[AppointmentEvent]:
        """Events from committed work, oldest first; clears the buffer"""
        events = self.booking.drain_events() + self.pending_events
        self.pending_events = []
        return sorted(events, key=lambda e: e.occurred_at)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_appointment(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, ctx.tenant_id, appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def _get_open_appointment(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        appointment = self._get_appointment(ctx, appointment_id)
        if self.state_machine.is_terminal(appointment.status):
            raise ValidationError(
                f"Appointment {appointment.appointment_number} is {appointment.status}",
                {"status": appointment.status},
            )
        return appointment

    def _record(
        self, ctx: RequestContext, appointment: Appointment, action: str, details: dict
    ) -> AppointmentHistory:
        """History entry for a change that leaves the status untouched"""
        return self.repo.add_history(
            self.db,
            AppointmentHistory(
                tenant_id=ctx.tenant_id,
                appointment_id=appointment.id,
                action=action,
                previous_status=appointment.status,
                new_status=appointment.status,
                details=details,
                performed_by=ctx.actor_id,
            ),
        )
