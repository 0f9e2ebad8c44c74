from datetime import date

import pytest

from app.core.config import settings
from app.services.schedule_service import default_schedule, parse_slot_ref, synthetic_slot_id, to_minutes


def test_default_schedule_skips_midday_break():
    """Seven hour-long windows from 10:00 to 18:00 with no 12:00 slot."""
    windows = default_schedule(date(2025, 6, 10))
    assert windows == [
        ("10:00", "11:00"),
        ("11:00", "12:00"),
        ("13:00", "14:00"),
        ("14:00", "15:00"),
        ("15:00", "16:00"),
        ("16:00", "17:00"),
        ("17:00", "18:00"),
    ]


def test_default_schedule_is_the_same_for_every_date():
    assert default_schedule(date(2025, 1, 1)) == default_schedule(date(2026, 12, 31))


def test_default_schedule_follows_configuration(monkeypatch):
    monkeypatch.setattr(settings, "slot_duration_minutes", 30)
    monkeypatch.setattr(settings, "closing_hour", 13)
    monkeypatch.setattr(settings, "break_start_hour", 11)
    monkeypatch.setattr(settings, "break_end_hour", 12)
    assert default_schedule(date(2025, 6, 10)) == [
        ("10:00", "10:30"),
        ("10:30", "11:00"),
        ("12:00", "12:30"),
        ("12:30", "13:00"),
    ]


def test_synthetic_id_round_trips_through_parser():
    ref = synthetic_slot_id(date(2025, 6, 10), 2)
    assert ref == "dynamic-2025-06-10-2"
    assert parse_slot_ref(ref) == (date(2025, 6, 10), 2)


def test_parse_slot_ref_accepts_persisted_ids():
    assert parse_slot_ref("42") == 42
    assert parse_slot_ref(" 7 ") == 7


@pytest.mark.parametrize("ref", ["", "abc", "dynamic-2025-06-10", "dynamic-2025-13-40-1", "dynamic-2025-06-10--1", "-3"])
def test_parse_slot_ref_rejects_malformed(ref):
    with pytest.raises(ValueError):
        parse_slot_ref(ref)


def test_to_minutes():
    assert to_minutes("00:00") == 0
    assert to_minutes("13:45") == 825
