"""
Decode AI-generated plan payloads into itinerary documents.

Models return plans in a few shapes:

- a bare array of day objects (``[{...}, {...}]``)
- an object wrapping the array under some key (``{"travelPlan": [...]}``,
  ``{"dailyItinerary": [...], "tripDetails": {...}}``)
- a single day object (``{"dayNumber": 1, ...}``)

``classify_plan`` names the shape explicitly; ``normalize_plan`` then coerces
each day's loosely-typed fields (objects, lists, numbers) to the flat display
text the document stores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from trippy.core.errors import GenerationError
from trippy.itinerary.document import MEAL_SLOTS, Day, ItineraryDocument, Meals

logger = logging.getLogger(__name__)

_DAY_NUMBER_KEYS = ("dayNumber", "day_number", "day")
_ACCOMMODATION_KEYS = ("name", "address", "details")
_ACTIVITY_KEYS = ("activityName", "name", "title", "description")
_SLOT_ACTIVITY_KEYS = ("morningActivities", "afternoonActivities", "eveningActivities")
_MEAL_NAME_KEYS = ("restaurant", "suggestion", "name")
_MEAL_DETAIL_KEYS = ("recommendation", "cuisine", "description")


class PlanShape(str, Enum):
    DAY_LIST = "day_list"
    WRAPPED_LIST = "wrapped_list"
    SINGLE_DAY = "single_day"


@dataclass(frozen=True)
class DecodedPlan:
    shape: PlanShape
    days: List[Any]
    key: Optional[str] = None


def classify_plan(payload: Any) -> DecodedPlan:
    """
    Identify which shape ``payload`` has.

    An object carrying a day-number key is a single day even though its
    ``activities`` value is an array. Otherwise the first array of objects
    wins, then the first array of anything. Scalars are rejected.
    """
    if isinstance(payload, list):
        return DecodedPlan(PlanShape.DAY_LIST, payload)
    if not isinstance(payload, dict):
        raise GenerationError(
            f"Unrecognized plan payload of type {type(payload).__name__}"
        )
    if any(key in payload for key in _DAY_NUMBER_KEYS):
        return DecodedPlan(PlanShape.SINGLE_DAY, [payload])

    arrays = [(key, value) for key, value in payload.items() if isinstance(value, list)]
    for key, value in arrays:
        if value and all(isinstance(item, dict) for item in value):
            return DecodedPlan(PlanShape.WRAPPED_LIST, value, key)
    if arrays:
        key, value = arrays[0]
        return DecodedPlan(PlanShape.WRAPPED_LIST, value, key)
    return DecodedPlan(PlanShape.SINGLE_DAY, [payload])


def _text(value: Any, keys: Iterable[str] = ()) -> str:
    """Flatten a loosely-typed model value to display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(part for part in (_text(item) for item in value) if part)
    if isinstance(value, dict):
        preferred = [k for k in keys if value.get(k)]
        source = [value[k] for k in preferred] if preferred else list(value.values())
        return "\n".join(part for part in (_text(item) for item in source) if part)
    return str(value).strip()


def _meal_text(value: Any) -> str:
    if not isinstance(value, dict):
        return _text(value)
    name = next((_text(value[k]) for k in _MEAL_NAME_KEYS if value.get(k)), "")
    detail = next((_text(value[k]) for k in _MEAL_DETAIL_KEYS if value.get(k)), "")
    if name and detail:
        return f"{name}: {detail}"
    return name or detail or _text(value)


def _activities(raw: Dict[str, Any]) -> List[str]:
    items = raw.get("activities")
    if not isinstance(items, list):
        # Detailed plans split activities by time of day
        items = []
        for key in _SLOT_ACTIVITY_KEYS:
            if isinstance(raw.get(key), list):
                items.extend(raw[key])
    activities = [text for text in (_text(item, _ACTIVITY_KEYS) for item in items) if text]
    return activities or [""]


def _coerce_day(raw: Dict[str, Any]) -> Day:
    meals = raw.get("meals") if isinstance(raw.get("meals"), dict) else {}
    return Day(
        accommodation=_text(raw.get("accommodation"), _ACCOMMODATION_KEYS),
        transportation=_text(raw.get("transportation")),
        budget=_text(raw.get("budget")),
        activities=_activities(raw),
        meals=Meals(**{slot: _meal_text(meals.get(slot)) for slot in MEAL_SLOTS}),
    )


def normalize_plan(payload: Any) -> ItineraryDocument:
    """
    Build a document from a generated plan payload.

    Day numbers come from position, not from the payload. Raises
    GenerationError when the payload holds no day objects.
    """
    decoded = classify_plan(payload)
    days = [_coerce_day(item) for item in decoded.days if isinstance(item, dict)]
    skipped = len(decoded.days) - len(days)
    if skipped:
        logger.warning("Dropped %d non-object entries from generated plan", skipped)
    if not days:
        raise GenerationError(f"Generated plan ({decoded.shape.value}) contained no days")

    logger.debug(
        "Decoded generated plan: shape=%s key=%s days=%d",
        decoded.shape.value,
        decoded.key,
        len(days),
    )
    doc = ItineraryDocument(days=days)
    doc.renumber()
    return doc
