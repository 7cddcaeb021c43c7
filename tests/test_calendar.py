"""Tests for weekly availability lookup."""

from datetime import date, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from service_scheduler.domain.scheduling.calendar import (
    AvailabilityCalendar,
    day_of_week,
    provider_timezone,
    window_bounds,
)
from service_scheduler.domain.scheduling.errors import ValidationError

from tests.conftest import MONDAY, at, make_provider, make_window


class TestDayOfWeek:
    def test_sunday_is_zero(self):
        assert day_of_week(date(2025, 3, 16)) == 0

    def test_monday_is_one(self):
        assert day_of_week(MONDAY) == 1

    def test_saturday_is_six(self):
        assert day_of_week(date(2025, 3, 22)) == 6


class TestProviderTimezone:
    def test_defaults_to_utc(self, db):
        provider = make_provider(db)
        assert provider_timezone(provider) is timezone.utc

    def test_iana_zone(self, db):
        provider = make_provider(db, tz="America/New_York")
        assert str(provider_timezone(provider)) == "America/New_York"

    def test_unknown_zone_raises(self, db):
        provider = make_provider(db, tz="Mars/Olympus_Mons")
        with pytest.raises(ValidationError):
            provider_timezone(provider)


class TestWindowsFor:
    def test_empty_without_windows(self, db):
        provider = make_provider(db)
        assert AvailabilityCalendar(db).windows_for(provider.id, 1) == []

    def test_ordered_by_start_time(self, db):
        provider = make_provider(db)
        afternoon = make_window(db, provider, start=time(13), end=time(17))
        morning = make_window(db, provider, start=time(8), end=time(12))

        windows = AvailabilityCalendar(db).windows_for(provider.id, 1)
        assert [w.id for w in windows] == [morning.id, afternoon.id]

    def test_blocked_windows_skipped(self, db):
        provider = make_provider(db)
        make_window(db, provider, is_available=False)
        assert AvailabilityCalendar(db).windows_for(provider.id, 1) == []

    def test_other_days_not_returned(self, db):
        provider = make_provider(db)
        make_window(db, provider, day_of_week=2)
        calendar = AvailabilityCalendar(db)
        assert calendar.windows_for(provider.id, 1) == []
        assert len(calendar.windows_for(provider.id, 2)) == 1

    def test_restartable(self, db):
        provider = make_provider(db)
        make_window(db, provider)
        calendar = AvailabilityCalendar(db)
        assert calendar.windows_on(provider.id, MONDAY) == calendar.windows_on(provider.id, MONDAY)

    def test_window_bounds_are_aware(self, db):
        provider = make_provider(db)
        window = make_window(db, provider)
        start, end = window_bounds(window, MONDAY, timezone.utc)
        assert start == at(MONDAY, 9)
        assert end == at(MONDAY, 17)

    def test_window_bounds_are_utc(self, db):
        provider = make_provider(db, tz="America/New_York")
        window = make_window(db, provider)
        start, end = window_bounds(window, MONDAY, ZoneInfo("America/New_York"))
        assert start == at(MONDAY, 13)
        assert end == at(MONDAY, 21)
        assert start.tzinfo == timezone.utc

    def test_window_bounds_follow_daylight_saving(self, db):
        provider = make_provider(db, tz="America/New_York")
        window = make_window(db, provider, day_of_week=0, start=time(0), end=time(5))
        tz = ZoneInfo("America/New_York")

        spring_start, spring_end = window_bounds(window, date(2025, 3, 9), tz)
        fall_start, fall_end = window_bounds(window, date(2025, 11, 2), tz)

        assert spring_end - spring_start == timedelta(hours=4)
        assert fall_end - fall_start == timedelta(hours=6)
