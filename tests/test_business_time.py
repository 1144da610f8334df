from datetime import UTC, date, datetime

from nudge_app.analytics.business_time import BusinessCalendar

WED = date(2024, 6, 12)


def test_weekend_due_date_counts_fewer_business_days():
    cal = BusinessCalendar()
    saturday = date(2024, 6, 15)
    business = cal.business_days_between(WED, saturday)
    calendar = cal.calendar_days_between(WED, saturday)
    assert business == 2  # Thursday, Friday
    assert calendar == 3
    assert business <= calendar


def test_holidays_excluded_from_count():
    cal = BusinessCalendar(holidays=["2024-06-13"])
    assert cal.business_days_between(WED, date(2024, 6, 14)) == 1


def test_past_target_is_negative():
    cal = BusinessCalendar()
    assert cal.business_days_between(WED, date(2024, 6, 11)) == -1
    # Monday before, skipping nothing on the way back
    assert cal.business_days_between(WED, date(2024, 6, 10)) == -2
    assert cal.business_days_between(WED, WED) == 0


def test_add_business_hours_skips_weekend():
    cal = BusinessCalendar()
    friday = datetime(2024, 6, 14, 16, tzinfo=UTC)
    assert cal.add_business_hours(friday, 4) == datetime(2024, 6, 17, 12, tzinfo=UTC)


def test_add_business_hours_from_before_opening():
    cal = BusinessCalendar()
    early = datetime(2024, 6, 12, 6, tzinfo=UTC)
    assert cal.add_business_hours(early, 2) == datetime(2024, 6, 12, 11, tzinfo=UTC)


def test_business_hours_between_is_signed():
    cal = BusinessCalendar()
    start = datetime(2024, 6, 14, 15, tzinfo=UTC)
    end = datetime(2024, 6, 17, 10, tzinfo=UTC)
    assert cal.business_hours_between(start, end) == 3.0
    assert cal.business_hours_between(end, start) == -3.0


def test_business_hours_respect_timezone():
    cal = BusinessCalendar(tz_name="America/New_York")
    # 14:00 UTC is 10:00 in New York during daylight saving time
    assert cal.is_business_hour(datetime(2024, 6, 12, 14, tzinfo=UTC))
    assert not cal.is_business_hour(datetime(2024, 6, 12, 12, tzinfo=UTC))


def test_next_business_day_skips_holiday_and_weekend():
    cal = BusinessCalendar(holidays=["2024-06-17"])
    assert cal.next_business_day(date(2024, 6, 14)) == date(2024, 6, 18)
