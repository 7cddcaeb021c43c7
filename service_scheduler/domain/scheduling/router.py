"""Service appointment router - FastAPI endpoints for scheduling operations"""

import logging
import math
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import RequestContext, get_request_context
from ...database import get_db
from ...models import Appointment, AppointmentAssignment, AppointmentHistory
from .events import ArqEventPublisher, get_event_publisher
from .schemas import (
    AnalyticsResponse,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentUpdate,
    AssignmentCreate,
    AssignmentRespond,
    AssignmentResponse,
    AvailableSlotsResponse,
    HistoryEntryResponse,
    ProviderResponse,
    ServiceTypeResponse,
    SlotResponse,
    StatusChangeRequest,
)
from .service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/service-appointments", tags=["Service Appointments"])


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(db)


def _assignment_response(a: AppointmentAssignment) -> AssignmentResponse:
    return AssignmentResponse(
        id=a.id,
        appointmentId=a.appointment_id,
        providerId=a.provider_id,
        role=a.role,
        status=a.status,
        assignedAt=a.assigned_at,
        confirmedAt=a.confirmed_at,
        notes=a.notes,
    )


def _appointment_response(a: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=a.id,
        appointmentNumber=a.appointment_number,
        orderId=a.order_id,
        serviceTypeId=a.service_type_id,
        title=a.title,
        description=a.description,
        scheduledStart=a.scheduled_start,
        scheduledEnd=a.scheduled_end,
        actualStart=a.actual_start,
        actualEnd=a.actual_end,
        actualDuration=a.actual_duration,
        estimatedDuration=a.estimated_duration,
        timezone=a.timezone,
        address=a.service_address,
        contactPerson=a.contact_person,
        contactPhone=a.contact_phone,
        contactEmail=a.contact_email,
        specialInstructions=a.special_instructions,
        status=a.status,
        priority=a.priority,
        cancellationReason=a.cancellation_reason,
        customerRating=a.customer_rating,
        createdBy=a.created_by,
        createdAt=a.created_at,
        assignments=[_assignment_response(x) for x in a.assignments],
    )


def _history_response(h: AppointmentHistory) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        id=h.id,
        appointmentId=h.appointment_id,
        action=h.action,
        previousStatus=h.previous_status,
        newStatus=h.new_status,
        details=h.details,
        reason=h.reason,
        performedBy=h.performed_by,
        performedAt=h.performed_at,
    )


# ============================================================================
# SLOTS & CATALOG
# ============================================================================


@router.get("/slots/available", response_model=AvailableSlotsResponse)
async def list_available_slots(
    service_type_id: int = Query(...),
    day: date = Query(..., alias="date"),
    provider_id: Optional[int] = Query(None),
    duration_override: Optional[int] = Query(None),
    service_area: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Candidate slots for a service type on a date, ordered by start then provider"""
    slots = service.list_available_slots(
        ctx,
        service_type_id,
        day,
        provider_id=provider_id,
        duration_override=duration_override,
        service_area=service_area,
        limit=limit,
    )
    return AvailableSlotsResponse(
        serviceTypeId=service_type_id,
        date=day.isoformat(),
        slots=[
            SlotResponse(
                providerId=s.provider_id,
                start=s.start,
                end=s.end,
                durationMinutes=s.duration_minutes,
            )
            for s in slots
        ],
        total=len(slots),
    )


@router.get("/service-types", response_model=list[ServiceTypeResponse])
async def list_service_types(
    category: Optional[str] = Query(None),
    active_only: bool = Query(True),
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return [
        ServiceTypeResponse(
            id=st.id,
            name=st.name,
            description=st.description,
            category=st.category,
            durationMinutes=st.duration_minutes,
            bufferTimeMinutes=st.buffer_time_minutes,
            requiresOrder=st.requires_order,
            skillRequirements=st.skill_requirements,
            equipmentRequirements=st.equipment_requirements,
            isActive=st.is_active,
        )
        for st in service.list_service_types(ctx, category, active_only)
    ]


@router.get("/providers", response_model=list[ProviderResponse])
async def list_providers(
    provider_type: Optional[str] = Query(None, alias="type"),
    active_only: bool = Query(True),
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return [
        ProviderResponse(
            id=p.id,
            name=p.name,
            type=p.type,
            email=p.email,
            phone=p.phone,
            skills=p.skills,
            serviceAreas=p.service_areas,
            maxConcurrentAppointments=p.max_concurrent_appointments,
            travelTimeMinutes=p.travel_time_minutes,
            timezone=p.timezone,
            isActive=p.is_active,
        )
        for p in service.list_providers(ctx, provider_type, active_only)
    ]


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
    publisher: ArqEventPublisher = Depends(get_event_publisher),
):
    """Book an appointment; with a preferred provider the slot is re-checked at commit"""
    appointment = service.create_appointment(ctx, data)
    await publisher.publish(service.drain_events())
    return _appointment_response(appointment)


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    service_type_id: Optional[int] = Query(None),
    provider_id: Optional[int] = Query(None),
    order_id: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    items, total = service.list_appointments(
        ctx,
        page=page,
        limit=limit,
        status=status,
        service_type_id=service_type_id,
        provider_id=provider_id,
        order_id=order_id,
        priority=priority,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    return AppointmentListResponse(
        items=[_appointment_response(a) for a in items],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    service_type_id: Optional[int] = Query(None),
    provider_id: Optional[int] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return AnalyticsResponse(
        **service.get_analytics(
            ctx,
            start_date=start_date,
            end_date=end_date,
            service_type_id=service_type_id,
            provider_id=provider_id,
        )
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return _appointment_response(service.get_appointment(ctx, appointment_id))


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Edit details such as title, contacts, priority or rating; use reschedule to move it"""
    return _appointment_response(service.update_appointment(ctx, appointment_id, data))


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
    publisher: ArqEventPublisher = Depends(get_event_publisher),
):
    appointment = service.reschedule_appointment(ctx, appointment_id, data)
    await publisher.publish(service.drain_events())
    return _appointment_response(appointment)


@router.post("/{appointment_id}/status")
async def change_status(
    appointment_id: int,
    data: StatusChangeRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
    publisher: ArqEventPublisher = Depends(get_event_publisher),
):
    """Apply a status transition; returns the appointment and its new history entry"""
    appointment, entry = service.change_status(
        ctx, appointment_id, data.status, reason=data.reason, notes=data.notes
    )
    await publisher.publish(service.drain_events())
    return {
        "appointment": _appointment_response(appointment),
        "history": _history_response(entry),
    }


@router.get("/{appointment_id}/history", response_model=list[HistoryEntryResponse])
async def get_appointment_history(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return [_history_response(h) for h in service.get_history(ctx, appointment_id)]


# ============================================================================
# ASSIGNMENTS
# ============================================================================


@router.get("/{appointment_id}/assignments", response_model=list[AssignmentResponse])
async def list_assignments(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return [_assignment_response(a) for a in service.list_assignments(ctx, appointment_id)]


@router.post(
    "/{appointment_id}/assignments", response_model=AssignmentResponse, status_code=201
)
async def assign_provider(
    appointment_id: int,
    data: AssignmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    assignment = service.assign_provider(
        ctx, appointment_id, data.providerId, data.role, data.notes
    )
    return _assignment_response(assignment)


@router.delete("/{appointment_id}/assignments/{provider_id}")
async def unassign_provider(
    appointment_id: int,
    provider_id: int,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.unassign_provider(ctx, appointment_id, provider_id)


@router.post(
    "/{appointment_id}/assignments/{provider_id}/respond", response_model=AssignmentResponse
)
async def respond_to_assignment(
    appointment_id: int,
    provider_id: int,
    data: AssignmentRespond,
    ctx: RequestContext = Depends(get_request_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    assignment = service.respond_to_assignment(ctx, appointment_id, provider_id, data.status)
    return _assignment_response(assignment)
