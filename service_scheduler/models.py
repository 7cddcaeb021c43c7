"""
Scheduling models: service catalog, providers, weekly availability,
appointments, provider assignments and the append-only appointment history.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


# Statuses that occupy a provider's calendar
COMMITTED_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)


class AppointmentPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class AssignmentRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    BACKUP = "backup"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    COMPLETED = "completed"


class ProviderType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    CONTRACTOR = "contractor"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware instant stored as UTC.

    Rejects naive datetimes on the way in and always hands back aware UTC
    values, including on SQLite which has no native timezone support.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ServiceType(Base):
    """Catalog entry describing how long a service takes and what it requires"""

    __tablename__ = "service_types"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False)  # installation, delivery, consultation, maintenance, training
    duration_minutes = Column(Integer, nullable=False, default=60)
    buffer_time_minutes = Column(Integer, nullable=False, default=15)
    requires_order = Column(Boolean, nullable=False, default=True)
    applicable_product_types = Column(JSON, nullable=True)
    skill_requirements = Column(JSON, nullable=True)  # list of skill tags
    equipment_requirements = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_service_type_duration_positive"),
        CheckConstraint("buffer_time_minutes >= 0", name="ck_service_type_buffer_non_negative"),
        Index("ix_service_types_tenant_category", "tenant_id", "category"),
    )


class ServiceProvider(Base):
    """Technician, consultant or contractor who can be assigned to appointments"""

    __tablename__ = "service_providers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    name = Column(String(100), nullable=False)
    employee_id = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    type = Column(String(20), nullable=False, default=ProviderType.INTERNAL.value)
    skills = Column(JSON, nullable=True)  # list of skill tags
    service_areas = Column(JSON, nullable=True)  # list of area tags
    max_concurrent_appointments = Column(Integer, nullable=False, default=1)
    travel_time_minutes = Column(Integer, nullable=False, default=30)
    timezone = Column(String(50), nullable=True)  # IANA zone for availability windows
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("ix_service_providers_tenant_type", "tenant_id", "type"),)


class ProviderAvailability(Base):
    """Recurring weekly window (provider-local wall clock) in which a provider can work"""

    __tablename__ = "provider_availability"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False)
    provider_id = Column(
        Integer, ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week = Column(Integer, nullable=False)  # 0-6 (Sunday-Saturday)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    max_appointments = Column(Integer, nullable=False, default=8)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    provider = relationship("ServiceProvider")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_availability_window_order"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day_of_week"),
        Index("ix_provider_availability_provider_day", "provider_id", "day_of_week"),
    )


class Appointment(Base):
    """A booked service visit for an order"""

    __tablename__ = "service_appointments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False)
    appointment_number = Column(String(50), nullable=False)
    order_id = Column(String(64), nullable=True, index=True)  # owned by the orders service
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    # Scheduling
    scheduled_start = Column(UTCDateTime, nullable=False)
    scheduled_end = Column(UTCDateTime, nullable=False)
    actual_start = Column(UTCDateTime, nullable=True)
    actual_end = Column(UTCDateTime, nullable=True)
    actual_duration = Column(Integer, nullable=True)  # minutes
    estimated_duration = Column(Integer, nullable=True)  # minutes
    timezone = Column(String(50), nullable=False, default="UTC")

    # Location & contact
    service_address = Column(JSON, nullable=False)
    contact_person = Column(String(100), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    contact_email = Column(String(255), nullable=True)
    special_instructions = Column(Text, nullable=True)

    # Status workflow: scheduled → confirmed → in_progress → completed
    # cancelled from scheduled/confirmed/in_progress, reschedule re-enters scheduled
    status = Column(
        String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True
    )
    priority = Column(String(20), nullable=False, default=AppointmentPriority.NORMAL.value)
    cancellation_reason = Column(Text, nullable=True)
    customer_rating = Column(Integer, nullable=True)  # 1-5, set after the visit

    created_by = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    service_type = relationship("ServiceType")
    assignments = relationship(
        "AppointmentAssignment",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentAssignment.id",
    )

    __table_args__ = (
        CheckConstraint("scheduled_end > scheduled_start", name="ck_appointment_interval"),
        CheckConstraint(
            "customer_rating IS NULL OR customer_rating BETWEEN 1 AND 5",
            name="ck_appointment_customer_rating",
        ),
        UniqueConstraint("tenant_id", "appointment_number", name="uq_appointment_number"),
        Index("ix_service_appointments_tenant_start", "tenant_id", "scheduled_start"),
    )

    @property
    def primary_assignment(self):
        for assignment in self.assignments:
            if assignment.role == AssignmentRole.PRIMARY.value:
                return assignment
        return None


class AppointmentAssignment(Base):
    """Link between an appointment and a provider, with the provider's role"""

    __tablename__ = "appointment_assignments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False)
    appointment_id = Column(
        Integer, ForeignKey("service_appointments.id", ondelete="CASCADE"), nullable=False
    )
    provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=AssignmentRole.PRIMARY.value)
    status = Column(String(20), nullable=False, default=AssignmentStatus.ASSIGNED.value)
    assigned_at = Column(UTCDateTime, default=utcnow)
    confirmed_at = Column(UTCDateTime, nullable=True)
    notes = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    appointment = relationship("Appointment", back_populates="assignments")
    provider = relationship("ServiceProvider")

    __table_args__ = (
        UniqueConstraint("appointment_id", "provider_id", name="uq_assignment_provider"),
        Index(
            "uq_assignment_single_primary",
            "appointment_id",
            unique=True,
            postgresql_where=text("role = 'primary'"),
            sqlite_where=text("role = 'primary'"),
        ),
    )


class AppointmentHistory(Base):
    """Append-only audit log of appointment changes"""

    __tablename__ = "appointment_history"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False)
    appointment_id = Column(
        Integer, ForeignKey("service_appointments.id", ondelete="CASCADE"), nullable=False
    )
    # created, confirmed, started, completed, cancelled, rescheduled,
    # updated, provider_assigned, provider_unassigned, assignment_<status>
    action = Column(String(50), nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    details = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    performed_by = Column(String(64), nullable=True)
    performed_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_appointment_history_appointment", "appointment_id", "performed_at"),
    )


@event.listens_for(AppointmentHistory, "before_update")
def _reject_history_update(_mapper, _connection, target):
    raise ValueError(f"Appointment history entry {target.id} is immutable")


@event.listens_for(AppointmentHistory, "before_delete")
def _reject_history_delete(_mapper, _connection, target):
    raise ValueError(f"Appointment history entry {target.id} cannot be deleted")
