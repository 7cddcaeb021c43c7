"""Provider weekly availability lookup"""

from datetime import date, datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ...config import DEFAULT_PROVIDER_TIMEZONE
from ...models import ProviderAvailability, ServiceProvider
from .errors import ValidationError


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return day.isoweekday() % 7


def provider_timezone(provider: Optional[ServiceProvider]) -> tzinfo:
    """Zone in which a provider's windows are expressed"""
    name = (provider.timezone if provider is not None else None) or DEFAULT_PROVIDER_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {name!r}", {"timezone": name}) from None


def window_bounds(window: ProviderAvailability, day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """
    UTC instants for a recurring window on ``day``.

    Start and end are wall-clock times in ``tz``; on a daylight-saving day
    the window is an hour shorter or longer than its clock span.
    """
    return (
        datetime.combine(day, window.start_time, tzinfo=tz).astimezone(timezone.utc),
        datetime.combine(day, window.end_time, tzinfo=tz).astimezone(timezone.utc),
    )


class AvailabilityCalendar:
    """
    Read-only ``(provider_id, day_of_week) -> windows`` lookup.

    Windows are owned by provider management; the scheduling core never
    writes them. Blocked windows (``is_available = False``) are skipped.
    """

    def __init__(self, db: Session):
        self.db = db

    def windows_for(self, provider_id: int, dow: int) -> list[ProviderAvailability]:
        rows = (
            self.db.query(ProviderAvailability)
            .filter(
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.day_of_week == dow,
                ProviderAvailability.is_available.is_(True),
            )
            .order_by(ProviderAvailability.start_time, ProviderAvailability.id)
            .all()
        )
        return rows

    def windows_on(self, provider_id: int, day: date) -> list[ProviderAvailability]:
        return self.windows_for(provider_id, day_of_week(day))
