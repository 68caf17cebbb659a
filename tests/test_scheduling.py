from datetime import datetime, timezone

import pytest

from recovery_api.errors import WindowClosed
from recovery_api.scheduling import check_change_window, hours_until, round_half_up

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_23_hours_out_is_rejected_and_reported():
    with pytest.raises(WindowClosed) as exc:
        check_change_window("2026-03-15", "11:00", NOW, action="cancel", tz_name="UTC")

    assert exc.value.status_code == 400
    assert exc.value.message == "Cannot cancel within 24 hours of appointment"
    assert exc.value.extra == {"canCancel": False, "hoursUntilAppointment": 23}


def test_24_4_hours_out_is_accepted():
    hours = check_change_window("2026-03-15", "12:24", NOW, tz_name="UTC")
    assert hours == pytest.approx(24.4)


def test_exactly_24_hours_is_accepted():
    assert check_change_window("2026-03-15", "12:00", NOW, tz_name="UTC") == 24


def test_reschedule_rejection_flag():
    with pytest.raises(WindowClosed) as exc:
        check_change_window("2026-03-14", "18:00", NOW, action="reschedule", tz_name="UTC")

    assert exc.value.extra == {"canReschedule": False, "hoursUntilAppointment": 6}
    assert "reschedule" in exc.value.message


def test_past_appointment_reports_negative_hours():
    with pytest.raises(WindowClosed) as exc:
        check_change_window("2026-03-14", "10:00", NOW, tz_name="UTC")
    assert exc.value.extra["hoursUntilAppointment"] == -2


def test_appointment_read_in_business_timezone():
    now = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)
    # 12:00 in New York (EDT) is 16:00 UTC
    assert hours_until("2026-07-01", "12:00", now, "America/New_York") == pytest.approx(4.0)


def test_round_half_up():
    assert round_half_up(23.5) == 24
    assert round_half_up(22.5) == 23
    assert round_half_up(23.49) == 23
