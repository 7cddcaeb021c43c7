"""
Scheduling Domain

Appointment scheduling for field-service work: recurring provider
availability, slot search, conflict-safe booking and rescheduling, provider
assignments and the status workflow with its audit history.

Structure:
```
domain/scheduling/
├── errors.py         # ValidationError, NotFoundError, ConflictError, StateTransitionError
├── conflicts.py      # half-open interval overlap
├── calendar.py       # (provider, day of week) -> availability windows
├── slots.py          # fixed-grid slot walk across eligible providers
├── state_machine.py  # status transitions and history records
├── assignments.py    # provider links, single primary per appointment
├── booking.py        # book / reschedule inside one locked transaction
├── transaction.py    # commit-or-rollback unit of work, storage error mapping
├── events.py         # post-commit event hand-off to the ARQ worker
├── repository.py     # queries
├── service.py        # facade used by the router
├── schemas.py
└── router.py
```
"""

from .assignments import AssignmentManager
from .booking import AppointmentBookingService
from .calendar import AvailabilityCalendar
from .conflicts import overlaps
from .errors import (
    ConflictError,
    NotFoundError,
    SchedulingError,
    StateTransitionError,
    ValidationError,
)
from .slots import Slot, SlotGenerator
from .state_machine import AppointmentStateMachine

__all__ = [
    "AppointmentBookingService",
    "AppointmentStateMachine",
    "AssignmentManager",
    "AvailabilityCalendar",
    "ConflictError",
    "NotFoundError",
    "SchedulingError",
    "Slot",
    "SlotGenerator",
    "StateTransitionError",
    "ValidationError",
    "overlaps",
]
