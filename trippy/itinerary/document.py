"""
Itinerary document: the ordered day-by-day plan co-edited in a live session.

The persisted form (``itinerary_data``) is a JSON array of day objects with
camelCase keys, e.g.::

    {"id": "a1b2c3", "dayNumber": 1, "accommodation": "", "transportation": "",
     "budget": "", "activities": [""],
     "meals": {"breakfast": "", "lunch": "", "dinner": ""}}

``dayNumber`` always equals the 1-based position of the day. Every structural
edit (add, remove, reorder) renumbers all days before returning.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MEAL_SLOTS = ("breakfast", "lunch", "dinner")
DAY_TEXT_FIELDS = ("accommodation", "transportation", "budget")


def _new_day_id() -> str:
    return uuid4().hex[:12]


class Meals(BaseModel):
    breakfast: str = ""
    lunch: str = ""
    dinner: str = ""


class Day(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=_new_day_id)
    day_number: int = 1
    accommodation: str = ""
    transportation: str = ""
    budget: str = ""
    activities: List[str] = Field(default_factory=lambda: [""])
    meals: Meals = Field(default_factory=Meals)


class ItineraryDocument(BaseModel):
    """Ordered list of days. Mutators edit in place."""

    days: List[Day] = Field(default_factory=list)

    @classmethod
    def default(cls) -> "ItineraryDocument":
        """A single empty day, used to seed a session without a draft."""
        return cls(days=[Day()])

    @classmethod
    def from_payload(cls, payload: Optional[List[Dict[str, Any]]]) -> "ItineraryDocument":
        doc = cls(days=[Day.model_validate(item) for item in payload or []])
        doc.renumber()
        return doc

    def to_payload(self) -> List[Dict[str, Any]]:
        return [day.model_dump(by_alias=True) for day in self.days]

    def snapshot(self) -> "ItineraryDocument":
        return self.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self.days)

    def find(self, day_id: str) -> Tuple[int, Day]:
        for index, day in enumerate(self.days):
            if day.id == day_id:
                return index, day
        raise KeyError(f"Unknown day id: {day_id}")

    # ---- structural edits ----

    def add_day(self) -> Day:
        day = Day(day_number=len(self.days) + 1)
        self.days.append(day)
        self.renumber()
        return day

    def remove_day(self, day_id: str) -> Day:
        index, day = self.find(day_id)
        del self.days[index]
        self.renumber()
        return day

    def reorder(self, source: int, destination: int) -> None:
        count = len(self.days)
        if not (0 <= source < count and 0 <= destination < count):
            raise IndexError(
                f"Reorder out of range: {source} -> {destination} with {count} days"
            )
        moved = self.days.pop(source)
        self.days.insert(destination, moved)
        self.renumber()

    def delete_activity(self, day_id: str, index: int) -> str:
        _, day = self.find(day_id)
        if not 0 <= index < len(day.activities):
            raise IndexError(f"Activity {index} out of range for day {day_id}")
        return day.activities.pop(index)

    # ---- field edits ----

    def set_day_field(self, day_id: str, field: str, value: str) -> None:
        if field not in DAY_TEXT_FIELDS:
            raise ValueError(f"Not an editable day field: {field}")
        _, day = self.find(day_id)
        setattr(day, field, value)

    def set_meal(self, day_id: str, meal: str, value: str) -> None:
        if meal not in MEAL_SLOTS:
            raise ValueError(f"Not a meal slot: {meal}")
        _, day = self.find(day_id)
        setattr(day.meals, meal, value)

    def set_activity(self, day_id: str, index: int, value: str) -> None:
        _, day = self.find(day_id)
        if not 0 <= index < len(day.activities):
            raise IndexError(f"Activity {index} out of range for day {day_id}")
        day.activities[index] = value

    def add_activity(self, day_id: str, value: str = "") -> int:
        _, day = self.find(day_id)
        day.activities.append(value)
        return len(day.activities) - 1

    def renumber(self) -> None:
        for position, day in enumerate(self.days, start=1):
            day.day_number = position
