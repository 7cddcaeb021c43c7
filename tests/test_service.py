"""Tests for the scheduling service facade: status changes, assignments and reads."""

from datetime import time

import pytest
from pydantic import ValidationError as SchemaValidationError

from service_scheduler.auth import RequestContext
from service_scheduler.domain.scheduling.errors import (
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from service_scheduler.domain.scheduling.schemas import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentUpdate,
)
from service_scheduler.domain.scheduling.service import SchedulingService
from service_scheduler.models import AppointmentHistory, AppointmentStatus as S
from tests.conftest import (
    MONDAY,
    OTHER_TENANT,
    at,
    make_appointment,
    make_provider,
    make_service_type,
    make_window,
)


@pytest.fixture
def service(db):
    return SchedulingService(db)


@pytest.fixture
def catalog(db):
    return make_service_type(db, duration=60, buffer=15), make_provider(db)


def create(service, ctx, service_type, start, end, provider=None, **kwargs):
    data = AppointmentCreate(
        orderId="ORD-7",
        serviceTypeId=service_type.id,
        start=start,
        end=end,
        address={"street": "5 Oak Ave"},
        preferredProviderId=provider.id if provider else None,
        **kwargs,
    )
    return service.create_appointment(ctx, data)


def history_count(db, appointment_id):
    return db.query(AppointmentHistory).filter_by(appointment_id=appointment_id).count()


class TestListAvailableSlots:
    def test_returns_list_capped_by_limit(self, ctx, service, catalog, db):
        service_type, provider = catalog
        make_window(db, provider)
        slots = service.list_available_slots(ctx, service_type.id, MONDAY, limit=2)
        assert len(slots) == 2
        assert slots[0].start == at(MONDAY, 9)

    def test_booked_slot_disappears(self, ctx, service, catalog, db):
        service_type, provider = catalog
        make_window(db, provider, start=time(9), end=time(10))
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        assert service.list_available_slots(ctx, service_type.id, MONDAY) == []


class TestChangeStatus:
    @pytest.mark.parametrize(
        "path",
        [
            [S.CONFIRMED],
            [S.CONFIRMED, S.IN_PROGRESS],
            [S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED],
            [S.CANCELLED],
            [S.CONFIRMED, S.CANCELLED],
            [S.CONFIRMED, S.IN_PROGRESS, S.CANCELLED],
        ],
    )
    def test_each_transition_writes_one_entry(self, db, ctx, service, catalog, path):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)

        previous = S.SCHEDULED
        for target in path:
            before = history_count(db, appointment.id)
            updated, entry = service.change_status(ctx, appointment.id, target)
            assert history_count(db, appointment.id) == before + 1
            assert (entry.previous_status, entry.new_status) == (previous.value, target.value)
            assert updated.status == target.value
            previous = target

    def test_illegal_transition_writes_nothing(self, db, ctx, service, catalog):
        service_type, provider = catalog
        appointment = make_appointment(
            db, service_type, provider, at(MONDAY, 9), at(MONDAY, 10), status=S.COMPLETED
        )
        with pytest.raises(StateTransitionError):
            service.change_status(ctx, appointment.id, S.SCHEDULED)

        assert history_count(db, appointment.id) == 0
        db.expire_all()
        assert service.get_appointment(ctx, appointment.id).status == "completed"

    def test_rescheduled_target_rejected(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        with pytest.raises(ValidationError):
            service.change_status(ctx, appointment.id, S.RESCHEDULED)

    def test_start_and_complete_stamp_actuals(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        service.change_status(ctx, appointment.id, S.CONFIRMED)
        started, _ = service.change_status(ctx, appointment.id, S.IN_PROGRESS)
        assert started.actual_start is not None

        completed, _ = service.change_status(ctx, appointment.id, S.COMPLETED)
        assert completed.actual_end >= completed.actual_start
        assert completed.actual_duration == 0
        assert [a.status for a in completed.assignments] == ["completed"]

    def test_cancel_stores_reason(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        cancelled, entry = service.change_status(
            ctx, appointment.id, S.CANCELLED, reason="customer away"
        )
        assert cancelled.cancellation_reason == "customer away"
        assert entry.reason == "customer away"

    def test_cancelled_slot_can_be_rebooked(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        service.change_status(ctx, appointment.id, S.CANCELLED)
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)

    def test_status_event(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        service.change_status(ctx, appointment.id, S.CONFIRMED)

        events = service.drain_events()
        assert [e.name for e in events] == ["appointment.created", "appointment.status_changed"]
        assert events[1].previous_status == "scheduled"
        assert events[1].new_status == "confirmed"
        assert service.drain_events() == []

    def test_unknown_appointment(self, ctx, service):
        with pytest.raises(NotFoundError):
            service.change_status(ctx, 999, S.CONFIRMED)


class TestReschedule:
    def test_reschedule_via_schema(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        moved = service.reschedule_appointment(
            ctx,
            appointment.id,
            AppointmentReschedule(newStart=at(MONDAY, 9, 10), newEnd=at(MONDAY, 10, 10)),
        )
        assert moved.scheduled_start == at(MONDAY, 9, 10)
        assert [h.action for h in service.get_history(ctx, appointment.id)] == [
            "created",
            "rescheduled",
        ]


class TestUpdateAppointment:
    def test_changed_fields_recorded_in_one_entry(self, db, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(
            service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider,
            title="Boiler check",
        )
        before = history_count(db, appointment.id)

        updated = service.update_appointment(
            ctx,
            appointment.id,
            AppointmentUpdate(title="Boiler service", contactPhone="555-0100", priority="high"),
        )

        assert updated.title == "Boiler service"
        assert updated.contact_phone == "555-0100"
        assert updated.priority == "high"
        assert history_count(db, appointment.id) == before + 1

        entry = service.get_history(ctx, appointment.id)[-1]
        assert entry.action == "updated"
        assert entry.previous_status == entry.new_status == "scheduled"
        assert entry.performed_by == ctx.actor_id
        assert entry.details == {
            "previous": {"title": "Boiler check", "contactPhone": None, "priority": "normal"},
            "new": {"title": "Boiler service", "contactPhone": "555-0100", "priority": "high"},
        }

    def test_unchanged_values_write_no_history(self, db, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(
            service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider, title="Same"
        )
        before = history_count(db, appointment.id)

        service.update_appointment(ctx, appointment.id, AppointmentUpdate(title="Same"))
        assert history_count(db, appointment.id) == before

    def test_interval_change_rejected(self, db, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        before = history_count(db, appointment.id)

        with pytest.raises(ValidationError) as exc:
            service.update_appointment(
                ctx, appointment.id, AppointmentUpdate(start=at(MONDAY, 11), title="Moved")
            )

        assert exc.value.details == {"fields": ["start"]}
        db.refresh(appointment)
        assert appointment.scheduled_start == at(MONDAY, 9)
        assert appointment.title == service_type.name
        assert history_count(db, appointment.id) == before

    def test_null_title_rejected(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        with pytest.raises(ValidationError):
            service.update_appointment(ctx, appointment.id, AppointmentUpdate(title=None))

    def test_rating_bounds(self):
        assert AppointmentUpdate(customerRating=5).customerRating == 5
        with pytest.raises(SchemaValidationError):
            AppointmentUpdate(customerRating=6)
        with pytest.raises(SchemaValidationError):
            AppointmentUpdate(customerRating=0)

    def test_rating_after_completion(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        for target in (S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED):
            service.change_status(ctx, appointment.id, target)

        updated = service.update_appointment(ctx, appointment.id, AppointmentUpdate(customerRating=4))
        assert updated.customer_rating == 4
        assert updated.status == "completed"

    def test_other_tenant_cannot_update(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        outsider = RequestContext(tenant_id=OTHER_TENANT, actor_id="someone")
        with pytest.raises(NotFoundError):
            service.update_appointment(outsider, appointment.id, AppointmentUpdate(title="Nope"))


class TestAssignments:
    def test_assign_and_unassign_write_history(self, db, ctx, service, catalog):
        service_type, provider = catalog
        helper = make_provider(db, name="Helper")
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)

        assignment = service.assign_provider(ctx, appointment.id, helper.id, "secondary")
        assert assignment.role == "secondary"
        result = service.unassign_provider(ctx, appointment.id, helper.id)
        assert result["remaining"] == 1

        history = service.get_history(ctx, appointment.id)
        assert [h.action for h in history] == ["created", "provider_assigned", "provider_unassigned"]
        assert all(h.new_status == "scheduled" for h in history)

    def test_assign_busy_provider(self, ctx, service, catalog, db):
        service_type, provider = catalog
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        second = create(service, ctx, service_type, at(MONDAY, 9, 30), at(MONDAY, 10, 30))

        with pytest.raises(ConflictError):
            service.assign_provider(ctx, second.id, provider.id)
        assert history_count(db, second.id) == 1

    def test_terminal_appointment_cannot_be_staffed(self, db, ctx, service, catalog):
        service_type, provider = catalog
        appointment = make_appointment(
            db, service_type, None, at(MONDAY, 9), at(MONDAY, 10), status=S.CANCELLED
        )
        with pytest.raises(ValidationError):
            service.assign_provider(ctx, appointment.id, provider.id)

    def test_unknown_provider(self, ctx, service, catalog):
        service_type, _ = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10))
        with pytest.raises(NotFoundError):
            service.assign_provider(ctx, appointment.id, 999)

    def test_respond_records_history(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)

        assignment = service.respond_to_assignment(ctx, appointment.id, provider.id, "confirmed")
        assert assignment.status == "confirmed"

        entry = service.get_history(ctx, appointment.id)[-1]
        assert entry.action == "assignment_confirmed"
        assert entry.details == {"provider_id": provider.id, "previous": "assigned", "new": "confirmed"}

    def test_declined_provider_is_free_again(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        service.respond_to_assignment(ctx, appointment.id, provider.id, "declined")
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)

    def test_list_assignments(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        assert [a.provider_id for a in service.list_assignments(ctx, appointment.id)] == [provider.id]


class TestReads:
    def test_tenant_isolation(self, ctx, service, catalog):
        service_type, provider = catalog
        appointment = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        outsider = RequestContext(tenant_id=OTHER_TENANT, actor_id="someone")
        with pytest.raises(NotFoundError):
            service.get_appointment(outsider, appointment.id)
        with pytest.raises(NotFoundError):
            service.get_history(outsider, appointment.id)

    def test_list_appointments_paginates(self, ctx, service, catalog):
        service_type, provider = catalog
        for hour in (9, 11, 13):
            create(service, ctx, service_type, at(MONDAY, hour), at(MONDAY, hour + 1), provider)

        items, total = service.list_appointments(ctx, page=1, limit=2)
        assert total == 3
        assert [a.scheduled_start.hour for a in items] == [13, 11]

        items, _ = service.list_appointments(ctx, page=2, limit=2)
        assert [a.scheduled_start.hour for a in items] == [9]

    def test_list_appointments_filters(self, ctx, service, catalog, db):
        service_type, provider = catalog
        other = make_provider(db, name="Other")
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), other)

        items, total = service.list_appointments(ctx, provider_id=other.id)
        assert total == 1
        assert items[0].primary_assignment.provider_id == other.id

        _, total = service.list_appointments(ctx, status="cancelled")
        assert total == 0

    def test_list_appointments_search(self, ctx, service, catalog):
        service_type, provider = catalog
        create(
            service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider,
            title="Boiler service",
        )
        create(
            service, ctx, service_type, at(MONDAY, 11), at(MONDAY, 12), provider,
            title="Window cleaning", description="Access through the boiler room",
        )
        gutters = create(
            service, ctx, service_type, at(MONDAY, 13), at(MONDAY, 14), provider, title="Gutters"
        )

        items, total = service.list_appointments(ctx, search="BOILER")
        assert total == 2
        assert {a.title for a in items} == {"Boiler service", "Window cleaning"}

        items, total = service.list_appointments(ctx, search=gutters.appointment_number.lower())
        assert total == 1
        assert items[0].id == gutters.id

        _, total = service.list_appointments(ctx, search="chimney")
        assert total == 0

    def test_analytics(self, ctx, service, catalog):
        service_type, provider = catalog
        first = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        second = create(service, ctx, service_type, at(MONDAY, 11), at(MONDAY, 12), provider)
        create(service, ctx, service_type, at(MONDAY, 13), at(MONDAY, 14), provider)
        create(service, ctx, service_type, at(MONDAY, 15), at(MONDAY, 16), provider)

        for target in (S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED):
            service.change_status(ctx, first.id, target)
        service.change_status(ctx, second.id, S.CANCELLED)

        analytics = service.get_analytics(ctx)
        assert analytics["totalAppointments"] == 4
        assert analytics["statusDistribution"] == {"completed": 1, "cancelled": 1, "scheduled": 2}
        assert analytics["completionRate"] == 25.0
        assert analytics["cancellationRate"] == 25.0
        assert analytics["averageActualDuration"] == 0.0

    def test_analytics_in_progress_and_rating(self, ctx, service, catalog):
        service_type, provider = catalog
        first = create(service, ctx, service_type, at(MONDAY, 9), at(MONDAY, 10), provider)
        second = create(service, ctx, service_type, at(MONDAY, 11), at(MONDAY, 12), provider)
        create(service, ctx, service_type, at(MONDAY, 13), at(MONDAY, 14), provider)

        for target in (S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED):
            service.change_status(ctx, first.id, target)
        for target in (S.CONFIRMED, S.IN_PROGRESS):
            service.change_status(ctx, second.id, target)
        service.update_appointment(ctx, first.id, AppointmentUpdate(customerRating=4))
        service.update_appointment(ctx, second.id, AppointmentUpdate(customerRating=5))

        analytics = service.get_analytics(ctx)
        assert analytics["inProgressAppointments"] == 1
        assert analytics["averageCustomerRating"] == 4.5

    def test_analytics_empty(self, ctx, service):
        analytics = service.get_analytics(ctx)
        assert analytics["totalAppointments"] == 0
        assert analytics["completionRate"] == 0.0
        assert analytics["averageActualDuration"] is None
        assert analytics["inProgressAppointments"] == 0
        assert analytics["averageCustomerRating"] is None

    def test_catalog_reads(self, db, ctx, service, catalog):
        service_type, provider = catalog
        make_service_type(db, name="Retired", is_active=False)
        make_provider(db, name="Contractor", type="contractor")

        assert [st.id for st in service.list_service_types(ctx)] == [service_type.id]
        assert len(service.list_service_types(ctx, active_only=False)) == 2
        assert [p.name for p in service.list_providers(ctx, provider_type="contractor")] == [
            "Contractor"
        ]
