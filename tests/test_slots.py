from datetime import datetime

import pytest

from front_desk.slots import DEFAULT_HOURS, format_label, generate_slots


NOW = datetime(2025, 1, 1, 14, 37)


def test_dental_slots_two_per_day():
    """Six dental slots over three days starting the day after now."""
    slots = generate_slots("Dentaire", now=NOW)

    assert [s.id for s in slots] == ["S1", "S2", "S3", "S4", "S5", "S6"]
    assert [s.datetime for s in slots] == [
        "2025-01-02T09:00",
        "2025-01-02T11:00",
        "2025-01-03T15:00",
        "2025-01-03T17:00",
        "2025-01-04T10:00",
        "2025-01-04T16:00",
    ]


@pytest.mark.parametrize("category", ["Dentaire", "Esthétique", "Multi-spécialités", "", None])
def test_always_six_slots_with_non_decreasing_dates(category):
    """Every category yields S1..S6 and dates never go backwards."""
    slots = generate_slots(category, now=NOW)

    assert len(slots) == 6
    assert [s.id for s in slots] == [f"S{i}" for i in range(1, 7)]
    days = [s.datetime[:10] for s in slots]
    assert days == sorted(days)
    assert days[0] == "2025-01-02"


def test_unknown_category_uses_default_hours():
    """An unknown category falls back to the default hour list."""
    slots = generate_slots("Radiologie", now=NOW)
    assert [int(s.datetime[11:13]) for s in slots] == list(DEFAULT_HOURS)


def test_year_rollover():
    """Late on New Year's Eve the first slot is on January 1st."""
    slots = generate_slots("Esthétique", now=datetime(2024, 12, 31, 23, 59))
    assert slots[0].datetime == "2025-01-01T12:00"
    assert slots[-1].datetime == "2025-01-03T19:00"


def test_french_label():
    """Labels are short French strings."""
    assert format_label(datetime(2025, 1, 2, 9, 0)) == "jeu. 02 janv., 09:00"
    assert generate_slots("Dentaire", now=NOW)[0].label == "jeu. 02 janv., 09:00"
