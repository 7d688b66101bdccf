from datetime import datetime, timedelta, timezone

import pytest

from core.cadence import (
    compute_next_run_at,
    is_business_hours,
    next_business_slot,
)
from core.cadence.schedule import to_naive_utc


@pytest.mark.parametrize("offset", [0, 1, 60, 1440, 10080])
def test_compute_next_run_at_adds_exact_offset(offset):
    base = datetime(2026, 3, 4, 13, 7, 42, 123456, tzinfo=timezone.utc)
    assert compute_next_run_at(base, offset) == base + timedelta(minutes=offset)


def test_compute_next_run_at_treats_naive_as_utc():
    base = datetime(2026, 3, 4, 13, 0)
    result = compute_next_run_at(base, 30)
    assert result == datetime(2026, 3, 4, 13, 30, tzinfo=timezone.utc)


def test_to_naive_utc_converts_offsets():
    sao_paulo = timezone(timedelta(hours=-3))
    moment = datetime(2026, 3, 4, 10, 0, tzinfo=sao_paulo)
    assert to_naive_utc(moment) == datetime(2026, 3, 4, 13, 0)


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2026, 3, 4, 13, 0, tzinfo=timezone.utc), True),  # qua 10h SP
        (datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc), True),  # qua 09h SP
        (datetime(2026, 3, 4, 11, 59, tzinfo=timezone.utc), False),  # qua 08h59 SP
        (datetime(2026, 3, 4, 21, 0, tzinfo=timezone.utc), False),  # qua 18h SP
        (datetime(2026, 3, 7, 13, 0, tzinfo=timezone.utc), False),  # sábado
    ],
)
def test_is_business_hours_in_sao_paulo(moment, expected):
    assert is_business_hours(moment) is expected


@pytest.mark.parametrize(
    "moment, expected",
    [
        # qua 07h SP -> mesmo dia 09h
        (
            datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc),
        ),
        # qua 19h SP -> qui 09h
        (
            datetime(2026, 3, 4, 22, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc),
        ),
        # sex 23h SP -> seg 09h
        (
            datetime(2026, 3, 7, 2, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc),
        ),
        # sábado 10h SP -> seg 09h
        (
            datetime(2026, 3, 7, 13, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc),
        ),
    ],
)
def test_next_business_slot(moment, expected):
    assert next_business_slot(moment) == expected


def test_business_hours_custom_timezone():
    moment = datetime(2026, 3, 4, 8, 30, tzinfo=timezone.utc)
    assert is_business_hours(moment, timezone_name="UTC", start_hour=8, end_hour=17)
