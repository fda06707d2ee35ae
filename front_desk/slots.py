"""Candidate appointment slots offered to the patient on each turn.

Slots are advisory: they are shown to the model and the user, but nothing
downstream checks that a booked datetime was one of them.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta


DEFAULT_HOURS: tuple[int, ...] = (10, 13, 15, 9, 11, 17)

HOURS_BY_CATEGORY: dict[str, tuple[int, ...]] = {
    "Dentaire": (9, 11, 15, 17, 10, 16),
    "Esthétique": (12, 14, 18, 11, 16, 19),
}

SLOTS_PER_DAY = 2

_WEEKDAYS = ("lun.", "mar.", "mer.", "jeu.", "ven.", "sam.", "dim.")
_MONTHS = (
    "janv.", "févr.", "mars", "avr.", "mai", "juin",
    "juil.", "août", "sept.", "oct.", "nov.", "déc.",
)


@dataclass(frozen=True, slots=True)
class Slot:
    id: str
    datetime: str
    label: str


def hours_for(category: str | None) -> Sequence[int]:
    """Return the ordered hour-of-day list for a service category."""
    return HOURS_BY_CATEGORY.get(category or "", DEFAULT_HOURS)


def format_label(moment: datetime) -> str:
    """Short French display label, e.g. ``ven. 02 janv., 09:00``."""
    return (
        f"{_WEEKDAYS[moment.weekday()]} {moment.day:02d} "
        f"{_MONTHS[moment.month - 1]}, {moment:%H:%M}"
    )


def generate_slots(category: str | None, now: datetime | None = None) -> list[Slot]:
    """Return six slots spread over the next three days, two per day.

    Slot ``i`` lands on the day after ``now`` plus ``i // 2`` days, at the
    ``i``-th hour of the category's list.
    """
    now = now or datetime.now()
    base_day = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    slots: list[Slot] = []
    for i, hour in enumerate(hours_for(category)):
        moment = (base_day + timedelta(days=i // SLOTS_PER_DAY)).replace(hour=hour)
        slots.append(
            Slot(
                id=f"S{i + 1}",
                datetime=moment.strftime("%Y-%m-%dT%H:%M"),
                label=format_label(moment),
            )
        )
    return slots
