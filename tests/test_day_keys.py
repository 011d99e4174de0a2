from datetime import date, datetime

import pytest
import pytz

from day_keys import day_key, days_between, parse_day_key, shift_day_key


def test_day_key_is_stable_within_a_day():
    assert day_key(datetime(2025, 1, 4, 0, 0, 1)) == day_key(datetime(2025, 1, 4, 23, 59, 59))
    assert day_key(datetime(2025, 1, 4, 23, 59, 59)) != day_key(datetime(2025, 1, 5, 0, 0, 0))


def test_day_key_format_is_unpadded():
    assert day_key(date(2025, 1, 4)) == "2025-1-4"
    assert day_key(date(2025, 12, 31)) == "2025-12-31"


def test_aware_datetimes_use_their_local_date():
    tz = pytz.timezone("Asia/Tokyo")
    late = tz.localize(datetime(2025, 1, 4, 23, 30))
    assert day_key(late) == "2025-1-4"
    assert day_key(late.astimezone(pytz.utc)) == "2025-1-4"
    early = tz.localize(datetime(2025, 1, 5, 1, 0))
    assert day_key(early) == "2025-1-5"


def test_parse_and_shift():
    assert parse_day_key("2025-1-4") == date(2025, 1, 4)
    assert shift_day_key("2024-12-31", 1) == "2025-1-1"
    assert days_between("2025-1-4", "2025-1-6") == 2
    assert days_between("2025-1-6", "2025-1-4") == -2


@pytest.mark.parametrize("bad", ["", "2025-1", "2025-13-1", "a-b-c"])
def test_parse_rejects_malformed_keys(bad):
    with pytest.raises(ValueError):
        parse_day_key(bad)
