"""
Slot Generation

Produces candidate bookable slots for a service type on a date. Each
eligible provider's windows are resolved to UTC and walked on a fixed grid of
``duration + buffer`` starting at the window start; a candidate is kept
when it fits the window and does not overlap a committed appointment.

Slots are advisory: nothing is reserved until the booking commits.
"""

import heapq
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from ...models import ServiceProvider, ServiceType
from .calendar import AvailabilityCalendar, day_of_week, provider_timezone, window_bounds
from .conflicts import find_overlapping
from .errors import NotFoundError, ValidationError
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    provider_id: int
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def walk_window(
    window_start: datetime, window_end: datetime, duration_minutes: int, buffer_minutes: int
) -> Iterator[tuple[datetime, datetime]]:
    """Fixed-increment candidate intervals inside one window"""
    length = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + buffer_minutes)
    cursor = window_start
    while cursor + length <= window_end:
        yield cursor, cursor + length
        cursor += step


def is_eligible(
    provider: ServiceProvider, service_type: ServiceType, service_area: Optional[str] = None
) -> bool:
    """Active provider holding every required skill (and serving the area, if asked)"""
    if not provider.is_active:
        return False
    required = set(service_type.skill_requirements or [])
    if required and not required.issubset(set(provider.skills or [])):
        return False
    if service_area and service_area not in (provider.service_areas or []):
        return False
    return True


class SlotGenerator:
    """Read-only slot search over provider availability and committed appointments"""

    def __init__(self, db: Session, calendar: Optional[AvailabilityCalendar] = None):
        self.db = db
        self.calendar = calendar or AvailabilityCalendar(db)
        self.repo = SchedulingRepository()

    def generate_slots(
        self,
        tenant_id: str,
        service_type_id: int,
        day: date,
        provider_id: Optional[int] = None,
        duration_override: Optional[int] = None,
        service_area: Optional[str] = None,
    ) -> Iterator[Slot]:
        """
        Lazily yield slots ordered by start time, ties broken by provider id.

        Raises NotFoundError for an unknown service type or provider filter
        and ValidationError for a non-positive duration override.
        """
        service_type = self.repo.get_service_type(self.db, tenant_id, service_type_id)
        if not service_type:
            raise NotFoundError(f"Service type {service_type_id} not found")

        if duration_override is not None and duration_override <= 0:
            raise ValidationError("Duration override must be a positive number of minutes")
        duration = duration_override or service_type.duration_minutes
        buffer = service_type.buffer_time_minutes or 0

        if provider_id is not None:
            provider = self.repo.get_provider(self.db, tenant_id, provider_id)
            if not provider:
                raise NotFoundError(f"Provider {provider_id} not found")
            candidates = [provider]
        else:
            candidates = self.repo.list_providers(self.db, tenant_id)

        providers = [p for p in candidates if is_eligible(p, service_type, service_area)]
        logger.debug(
            f"🔍 Slot search: service_type={service_type_id} date={day} "
            f"providers={len(providers)} duration={duration} buffer={buffer}"
        )

        per_provider = [self._provider_slots(p, day, duration, buffer) for p in providers]
        return heapq.merge(*per_provider, key=lambda s: (s.start, s.provider_id))

    def _provider_slots(
        self, provider: ServiceProvider, day: date, duration: int, buffer: int
    ) -> Iterator[Slot]:
        windows = self.calendar.windows_for(provider.id, day_of_week(day))
        if not windows:
            return

        try:
            tz = provider_timezone(provider)
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping provider {provider.id} in slot search: {e.message}")
            return

        day_start = datetime.combine(day, time.min, tzinfo=tz)
        day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
        booked = self.repo.committed_appointments_for_provider(
            self.db, provider.id, day_start, day_end
        )

        found: dict[datetime, Slot] = {}
        for window in windows:
            window_start, window_end = window_bounds(window, day, tz)

            if window.max_appointments and window.max_appointments > 0:
                starting_inside = sum(
                    1 for appt in booked if window_start <= appt.scheduled_start < window_end
                )
                if starting_inside >= window.max_appointments:
                    continue

            for start, end in walk_window(window_start, window_end, duration, buffer):
                if find_overlapping((start, end), booked):
                    continue
                found.setdefault(start, Slot(provider.id, start, end))

        for start in sorted(found):
            yield found[start]
