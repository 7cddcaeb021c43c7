"""Scheduling repository - Database operations for appointments and their providers"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, text
from sqlalchemy.orm import Session, selectinload

from ...models import (
    COMMITTED_STATUSES,
    Appointment,
    AppointmentAssignment,
    AppointmentHistory,
    AssignmentStatus,
    ServiceProvider,
    ServiceType,
)

_COMMITTED = [s.value for s in COMMITTED_STATUSES]


def _as_utc(value: datetime) -> datetime:
    # Filter bounds without an offset are read as UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SchedulingRepository:
    """Repository for scheduling database operations"""

    # Catalog (read-only for this service)
    @staticmethod
    def get_service_type(db: Session, tenant_id: str, service_type_id: int) -> Optional[ServiceType]:
        return (
            db.query(ServiceType)
            .filter(ServiceType.id == service_type_id, ServiceType.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def list_service_types(
        db: Session, tenant_id: str, category: Optional[str] = None, active_only: bool = True
    ) -> list[ServiceType]:
        query = db.query(ServiceType).filter(ServiceType.tenant_id == tenant_id)
        if category:
            query = query.filter(ServiceType.category == category)
        if active_only:
            query = query.filter(ServiceType.is_active.is_(True))
        return query.order_by(ServiceType.name).all()

    @staticmethod
    def get_provider(db: Session, tenant_id: str, provider_id: int) -> Optional[ServiceProvider]:
        return (
            db.query(ServiceProvider)
            .filter(ServiceProvider.id == provider_id, ServiceProvider.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def list_providers(
        db: Session,
        tenant_id: str,
        provider_type: Optional[str] = None,
        provider_id: Optional[int] = None,
        active_only: bool = True,
    ) -> list[ServiceProvider]:
        query = db.query(ServiceProvider).filter(ServiceProvider.tenant_id == tenant_id)
        if provider_type:
            query = query.filter(ServiceProvider.type == provider_type)
        if provider_id is not None:
            query = query.filter(ServiceProvider.id == provider_id)
        if active_only:
            query = query.filter(ServiceProvider.is_active.is_(True))
        return query.order_by(ServiceProvider.id).all()

    @staticmethod
    def lock_providers(db: Session, tenant_id: str, provider_ids: list[int]) -> list[ServiceProvider]:
        """
        Take row locks on the given providers, in id order.

        Concurrent bookings touching the same provider queue up here until the
        holder commits or rolls back. Ordering by id keeps multi-provider
        reschedules from deadlocking each other.
        """
        if not provider_ids:
            return []
        return (
            db.query(ServiceProvider)
            .filter(
                ServiceProvider.tenant_id == tenant_id,
                ServiceProvider.id.in_(sorted(set(provider_ids))),
            )
            .order_by(ServiceProvider.id)
            .with_for_update()
            .all()
        )

    @staticmethod
    def apply_lock_timeout(db: Session, seconds: float) -> None:
        """Bound how long this transaction may wait on locks or run a statement"""
        if db.get_bind().dialect.name != "postgresql":
            return
        millis = str(max(1, int(seconds * 1000)))
        db.execute(text("SELECT set_config('lock_timeout', :ms, true)"), {"ms": millis})
        db.execute(text("SELECT set_config('statement_timeout', :ms, true)"), {"ms": millis})

    # Appointments
    @staticmethod
    def get_appointment(db: Session, tenant_id: str, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(selectinload(Appointment.assignments))
            .filter(Appointment.id == appointment_id, Appointment.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def committed_appointments_for_provider(
        db: Session,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[Appointment]:
        """
        Appointments occupying ``provider_id`` that intersect ``[start, end)``.

        Occupying means the appointment is scheduled, confirmed or in progress
        and the provider has not declined the assignment.
        """
        query = (
            db.query(Appointment)
            .join(AppointmentAssignment, AppointmentAssignment.appointment_id == Appointment.id)
            .filter(
                AppointmentAssignment.provider_id == provider_id,
                AppointmentAssignment.status != AssignmentStatus.DECLINED.value,
                Appointment.status.in_(_COMMITTED),
                Appointment.scheduled_start < end,
                Appointment.scheduled_end > start,
            )
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.scheduled_start, Appointment.id).all()

    @staticmethod
    def _filtered_appointments(
        db: Session,
        tenant_id: str,
        status: Optional[str] = None,
        service_type_id: Optional[int] = None,
        provider_id: Optional[int] = None,
        order_id: Optional[str] = None,
        priority: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
    ):
        query = db.query(Appointment).filter(Appointment.tenant_id == tenant_id)

        if status:
            query = query.filter(Appointment.status == status)
        if service_type_id is not None:
            query = query.filter(Appointment.service_type_id == service_type_id)
        if order_id:
            query = query.filter(Appointment.order_id == order_id)
        if priority:
            query = query.filter(Appointment.priority == priority)
        if start_date:
            query = query.filter(Appointment.scheduled_start >= _as_utc(start_date))
        if end_date:
            query = query.filter(Appointment.scheduled_end <= _as_utc(end_date))
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Appointment.title.ilike(pattern),
                    Appointment.appointment_number.ilike(pattern),
                    Appointment.description.ilike(pattern),
                )
            )
        if provider_id is not None:
            query = query.filter(
                Appointment.assignments.any(AppointmentAssignment.provider_id == provider_id)
            )
        return query

    @staticmethod
    def search_appointments(
        db: Session, tenant_id: str, page: int = 1, limit: int = 20, **filters
    ) -> tuple[list[Appointment], int]:
        """Filter appointments; returns one page and the total match count"""
        query = SchedulingRepository._filtered_appointments(db, tenant_id, **filters)
        total = query.count()
        items = (
            query.options(selectinload(Appointment.assignments))
            .order_by(Appointment.scheduled_start.desc(), Appointment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def appointments_for_analytics(db: Session, tenant_id: str, **filters) -> list[Appointment]:
        return SchedulingRepository._filtered_appointments(db, tenant_id, **filters).all()

    # Assignments
    @staticmethod
    def get_assignment(
        db: Session, appointment_id: int, provider_id: int
    ) -> Optional[AppointmentAssignment]:
        return (
            db.query(AppointmentAssignment)
            .filter(
                AppointmentAssignment.appointment_id == appointment_id,
                AppointmentAssignment.provider_id == provider_id,
            )
            .first()
        )

    @staticmethod
    def list_assignments(db: Session, appointment_id: int) -> list[AppointmentAssignment]:
        return (
            db.query(AppointmentAssignment)
            .filter(AppointmentAssignment.appointment_id == appointment_id)
            .order_by(AppointmentAssignment.id)
            .all()
        )

    # History
    @staticmethod
    def add_history(db: Session, entry: AppointmentHistory) -> AppointmentHistory:
        db.add(entry)
        return entry

    @staticmethod
    def get_history(db: Session, appointment_id: int) -> list[AppointmentHistory]:
        return (
            db.query(AppointmentHistory)
            .filter(AppointmentHistory.appointment_id == appointment_id)
            .order_by(AppointmentHistory.performed_at, AppointmentHistory.id)
            .all()
        )
