from datetime import date, time, timezone

import pytest

from kandy_tasks.services.validation import (
    estimate_hours,
    estimated_hours_in_range,
    is_sri_lankan_phone,
    is_valid_full_name,
    join_list,
    local_day_bounds_utc,
    split_list,
)


@pytest.mark.parametrize("phone", [
    "0771234567",
    "077 123 4567",
    "+94771234567",
    "071-234-5678",
    "0812345678",
    "(081) 234 5678",
    "+94112345678",
])
def test_accepts_sri_lankan_numbers(phone):
    assert is_sri_lankan_phone(phone)


@pytest.mark.parametrize("phone", [
    "",
    None,
    "12345",
    "0071234567",
    "07712345678",
    "0712345abc",
    "+14155552671",
])
def test_rejects_other_numbers(phone):
    assert not is_sri_lankan_phone(phone)


def test_full_name_rules():
    assert is_valid_full_name("Sunil Bandara")
    assert is_valid_full_name("Jo")
    assert not is_valid_full_name("A")
    assert not is_valid_full_name("   ")
    assert not is_valid_full_name("123456")
    assert not is_valid_full_name("12345 6a")


def test_estimate_rounds_up_to_half_hour():
    assert estimate_hours(time(9, 0), time(11, 0)) == 2.0
    assert estimate_hours(time(9, 0), time(9, 20)) == 0.5
    assert estimate_hours(time(9, 0), time(10, 40)) == 2.0
    assert estimate_hours(time(13, 15), time(14, 0)) == 1.0


def test_estimated_hours_bounds():
    assert estimated_hours_in_range(0.5)
    assert estimated_hours_in_range(24)
    assert not estimated_hours_in_range(0.25)
    assert not estimated_hours_in_range(24.5)


def test_local_day_bounds_are_colombo_midnights():
    start, end = local_day_bounds_utc(date(2024, 3, 10))
    # Asia/Colombo is UTC+05:30
    assert start.tzinfo == timezone.utc
    assert (start.day, start.hour, start.minute) == (9, 18, 30)
    assert (end.day, end.hour, end.minute) == (10, 18, 29)


def test_list_helpers():
    assert join_list([" Wiring ", "", "Solar"]) == "Wiring,Solar"
    assert join_list(None) is None
    assert split_list("Wiring, Solar,,") == ["Wiring", "Solar"]
    assert split_list(None) == []
