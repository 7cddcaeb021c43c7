"""Shared test fixtures and helpers."""

import os

# The application engine is never used by tests; every test gets its own file database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date, datetime, time, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from service_scheduler.auth import RequestContext
from service_scheduler.database import Base, build_engine, get_db
from service_scheduler.domain.scheduling.events import get_event_publisher
from service_scheduler.models import (
    Appointment,
    AppointmentAssignment,
    AppointmentStatus,
    AssignmentRole,
    AssignmentStatus,
    ProviderAvailability,
    ServiceProvider,
    ServiceType,
)

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
ACTOR = "dispatcher-1"

# 2025-03-17 is a Monday (day_of_week == 1)
MONDAY = date(2025, 3, 17)


def at(day: date, hour: int, minute: int = 0, tz=timezone.utc) -> datetime:
    """Aware datetime on ``day`` at hour:minute"""
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduler.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ctx():
    return RequestContext(tenant_id=TENANT, actor_id=ACTOR)


class RecordingPublisher:
    """Stands in for the ARQ publisher; keeps published events in memory"""

    def __init__(self):
        self.events = []

    async def publish(self, events) -> int:
        self.events.extend(events)
        return len(events)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def client(session_factory, publisher):
    from service_scheduler.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    yield TestClient(app, headers={"X-Tenant-ID": TENANT, "X-Actor-ID": ACTOR})
    app.dependency_overrides.clear()


def make_service_type(
    db,
    duration: int = 60,
    buffer: int = 15,
    requires_order: bool = False,
    skills: Optional[list[str]] = None,
    tenant_id: str = TENANT,
    **kwargs,
) -> ServiceType:
    """Helper to create a ServiceType with sensible defaults."""
    service_type = ServiceType(
        tenant_id=tenant_id,
        name=kwargs.pop("name", "Installation"),
        category=kwargs.pop("category", "installation"),
        duration_minutes=duration,
        buffer_time_minutes=buffer,
        requires_order=requires_order,
        skill_requirements=skills,
        **kwargs,
    )
    db.add(service_type)
    db.commit()
    return service_type


def make_provider(
    db,
    name: str = "Alex Rivera",
    skills: Optional[list[str]] = None,
    areas: Optional[list[str]] = None,
    tz: Optional[str] = None,
    tenant_id: str = TENANT,
    **kwargs,
) -> ServiceProvider:
    """Helper to create a ServiceProvider."""
    provider = ServiceProvider(
        tenant_id=tenant_id,
        name=name,
        skills=skills,
        service_areas=areas,
        timezone=tz,
        **kwargs,
    )
    db.add(provider)
    db.commit()
    return provider


def make_window(
    db,
    provider: ServiceProvider,
    day_of_week: int = 1,
    start: time = time(9, 0),
    end: time = time(17, 0),
    **kwargs,
) -> ProviderAvailability:
    """Helper to create a weekly availability window (Monday 09:00-17:00 by default)."""
    window = ProviderAvailability(
        tenant_id=provider.tenant_id,
        provider_id=provider.id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        **kwargs,
    )
    db.add(window)
    db.commit()
    return window


_sequence = iter(range(1, 1_000_000))


def make_appointment(
    db,
    service_type: ServiceType,
    provider: Optional[ServiceProvider],
    start: datetime,
    end: datetime,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    role: AssignmentRole = AssignmentRole.PRIMARY,
    assignment_status: AssignmentStatus = AssignmentStatus.ASSIGNED,
) -> Appointment:
    """Helper to insert an appointment directly, bypassing the booking checks."""
    appointment = Appointment(
        tenant_id=service_type.tenant_id,
        appointment_number=f"SA-TEST{next(_sequence):04d}",
        service_type_id=service_type.id,
        title=service_type.name,
        scheduled_start=start,
        scheduled_end=end,
        estimated_duration=int((end - start).total_seconds() // 60),
        service_address={"street": "1 Main St", "city": "Springfield"},
        status=AppointmentStatus(status).value,
    )
    if provider is not None:
        appointment.assignments.append(
            AppointmentAssignment(
                tenant_id=service_type.tenant_id,
                provider_id=provider.id,
                role=AssignmentRole(role).value,
                status=AssignmentStatus(assignment_status).value,
            )
        )
    db.add(appointment)
    db.commit()
    return appointment
