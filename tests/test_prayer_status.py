import pytest

from prayer_status import PrayerStatus, PrayerStatusStore, status_key
from storage import KeyValueStore


@pytest.mark.parametrize("start", list(PrayerStatus))
def test_three_cycles_return_to_start(memory_store, start):
    statuses = PrayerStatusStore(memory_store)
    statuses.set("2025-1-4", "Asr", start)

    for _ in range(3):
        statuses.cycle("2025-1-4", "Asr")

    assert statuses.get("2025-1-4", "Asr") is start


def test_cycle_order_and_persisted_values(memory_store):
    statuses = PrayerStatusStore(memory_store)

    assert statuses.get("2025-1-4", "Fajr") is PrayerStatus.UNSET
    assert statuses.cycle("2025-1-4", "Fajr") is PrayerStatus.COMPLETED
    assert memory_store.get("2025-1-4-Fajr") == "prayed"
    assert statuses.cycle("2025-1-4", "Fajr") is PrayerStatus.MISSED
    assert memory_store.get("2025-1-4-Fajr") == "missed"
    assert statuses.cycle("2025-1-4", "Fajr") is PrayerStatus.UNSET
    assert memory_store.get("2025-1-4-Fajr") == "none"


def test_days_and_prayers_are_independent(memory_store):
    statuses = PrayerStatusStore(memory_store)
    statuses.cycle("2025-1-4", "Fajr")

    assert statuses.get("2025-1-5", "Fajr") is PrayerStatus.UNSET
    assert statuses.get("2025-1-4", "Dhuhr") is PrayerStatus.UNSET
    assert statuses.bulk_load("2025-1-4", ["Fajr", "Dhuhr"]) == {
        "Fajr": PrayerStatus.COMPLETED,
        "Dhuhr": PrayerStatus.UNSET,
    }


def test_corrupt_value_reads_as_unset(memory_store, caplog):
    memory_store.set(status_key("2025-1-4", "Isha"), "maybe")

    assert PrayerStatusStore(memory_store).get("2025-1-4", "Isha") is PrayerStatus.UNSET
    assert "corrupt status" in caplog.text


def test_statuses_survive_a_restart(tmp_path):
    path = tmp_path / "state.json"
    PrayerStatusStore(KeyValueStore(path)).cycle("2025-1-4", "Maghrib")

    assert PrayerStatusStore(KeyValueStore(path)).get("2025-1-4", "Maghrib") is PrayerStatus.COMPLETED
