"""
Interval overlap predicate shared by slot generation and booking.

Intervals are half-open ``[start, end)``: an appointment ending at 10:00
does not conflict with one starting at 10:00.
"""

from datetime import datetime
from typing import Iterable, Optional

Interval = tuple[datetime, datetime]


def overlaps(a: Interval, b: Interval) -> bool:
    """True when the half-open intervals ``a`` and ``b`` share any instant"""
    return a[0] < b[1] and b[0] < a[1]


def find_overlapping(interval: Interval, appointments: Iterable) -> list:
    """Return the appointments whose scheduled interval overlaps ``interval``"""
    return [
        appt
        for appt in appointments
        if overlaps(interval, (appt.scheduled_start, appt.scheduled_end))
    ]


def conflict_summary(appointment, provider_id: Optional[int] = None) -> dict:
    """Serializable description of a conflicting appointment for error payloads"""
    return {
        "appointment_id": appointment.id,
        "appointment_number": appointment.appointment_number,
        "provider_id": provider_id,
        "scheduled_start": appointment.scheduled_start.isoformat(),
        "scheduled_end": appointment.scheduled_end.isoformat(),
        "status": appointment.status,
    }
