"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import AppointmentPriority, AppointmentStatus, AssignmentRole, AssignmentStatus


def _require_aware(v):
    if v is not None and v.tzinfo is None:
        raise ValueError("datetime must include a timezone offset")
    return v


class SlotResponse(BaseModel):
    """One candidate bookable interval"""

    providerId: int
    start: datetime
    end: datetime
    durationMinutes: int


class AvailableSlotsResponse(BaseModel):
    serviceTypeId: int
    date: str
    slots: list[SlotResponse]
    total: int


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment"""

    orderId: Optional[str] = None
    serviceTypeId: int
    start: datetime
    end: datetime
    address: dict
    preferredProviderId: Optional[int] = None
    durationOverride: bool = False
    title: Optional[str] = None
    description: Optional[str] = None
    priority: AppointmentPriority = AppointmentPriority.NORMAL
    contactPerson: Optional[str] = None
    contactPhone: Optional[str] = None
    contactEmail: Optional[str] = None
    specialInstructions: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def validate_aware(cls, v):
        return _require_aware(v)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        if not v:
            raise ValueError("address must not be empty")
        return v


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new interval"""

    newStart: datetime
    newEnd: datetime
    reason: Optional[str] = None
    durationOverride: bool = False

    @field_validator("newStart", "newEnd")
    @classmethod
    def validate_aware(cls, v):
        return _require_aware(v)


class AppointmentUpdate(BaseModel):
    """Schema for editing appointment details; the interval is changed by rescheduling"""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[AppointmentPriority] = None
    contactPerson: Optional[str] = None
    contactPhone: Optional[str] = None
    contactEmail: Optional[str] = None
    specialInstructions: Optional[str] = None
    customerRating: Optional[int] = None
    # Accepted only so that an interval change is rejected instead of ignored
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is not None and not v.strip():
            raise ValueError("title must not be empty")
        return v

    @field_validator("customerRating")
    @classmethod
    def validate_rating(cls, v):
        if v is not None and not 1 <= v <= 5:
            raise ValueError("customerRating must be between 1 and 5")
        return v


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None


class AssignmentCreate(BaseModel):
    providerId: int
    role: AssignmentRole = AssignmentRole.PRIMARY
    notes: Optional[str] = None


class AssignmentRespond(BaseModel):
    status: AssignmentStatus


class AssignmentResponse(BaseModel):
    id: int
    appointmentId: int
    providerId: int
    role: str
    status: str
    assignedAt: Optional[datetime] = None
    confirmedAt: Optional[datetime] = None
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: int
    appointmentNumber: str
    orderId: Optional[str]
    serviceTypeId: int
    title: str
    description: Optional[str] = None
    scheduledStart: datetime
    scheduledEnd: datetime
    actualStart: Optional[datetime] = None
    actualEnd: Optional[datetime] = None
    actualDuration: Optional[int] = None
    estimatedDuration: Optional[int] = None
    timezone: str
    address: dict
    contactPerson: Optional[str] = None
    contactPhone: Optional[str] = None
    contactEmail: Optional[str] = None
    specialInstructions: Optional[str] = None
    status: str
    priority: str
    cancellationReason: Optional[str] = None
    customerRating: Optional[int] = None
    createdBy: Optional[str] = None
    createdAt: Optional[datetime] = None
    assignments: list[AssignmentResponse] = []


class AppointmentListResponse(BaseModel):
    items: list[AppointmentResponse]
    total: int
    page: int
    limit: int
    pages: int


class HistoryEntryResponse(BaseModel):
    id: int
    appointmentId: int
    action: str
    previousStatus: Optional[str] = None
    newStatus: Optional[str] = None
    details: Optional[dict] = None
    reason: Optional[str] = None
    performedBy: Optional[str] = None
    performedAt: datetime


class ServiceTypeResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: str
    durationMinutes: int
    bufferTimeMinutes: int
    requiresOrder: bool
    skillRequirements: Optional[list[str]] = None
    equipmentRequirements: Optional[list[str]] = None
    isActive: bool


class ProviderResponse(BaseModel):
    id: int
    name: str
    type: str
    email: Optional[str] = None
    phone: Optional[str] = None
    skills: Optional[list[str]] = None
    serviceAreas: Optional[list[str]] = None
    maxConcurrentAppointments: int
    travelTimeMinutes: int
    timezone: Optional[str] = None
    isActive: bool


class AnalyticsResponse(BaseModel):
    totalAppointments: int
    statusDistribution: dict[str, int]
    completionRate: float
    cancellationRate: float
    inProgressAppointments: int
    averageActualDuration: Optional[float] = None
    averageCustomerRating: Optional[float] = None
