"""Tests for the itinerary document model."""

import pytest

from trippy.itinerary.document import Day, ItineraryDocument


def _numbers(doc):
    return [day.day_number for day in doc.days]


def test_default_document_has_one_empty_day():
    doc = ItineraryDocument.default()
    assert len(doc) == 1
    day = doc.days[0]
    assert day.day_number == 1
    assert day.activities == [""]
    assert day.meals.breakfast == ""


def test_structural_edits_keep_day_numbers_positional():
    doc = ItineraryDocument.default()
    second = doc.add_day()
    third = doc.add_day()
    assert _numbers(doc) == [1, 2, 3]

    doc.remove_day(second.id)
    assert _numbers(doc) == [1, 2]
    assert doc.days[1].id == third.id

    doc.reorder(1, 0)
    assert doc.days[0].id == third.id
    assert _numbers(doc) == [1, 2]


def test_reorder_out_of_range():
    doc = ItineraryDocument.default()
    with pytest.raises(IndexError):
        doc.reorder(0, 3)


def test_remove_unknown_day():
    doc = ItineraryDocument.default()
    with pytest.raises(KeyError):
        doc.remove_day("missing")


def test_payload_uses_camel_case_and_renumbers_on_load():
    payload = [
        {"id": "b", "dayNumber": 7, "activities": ["Tram 28"]},
        {"id": "a", "dayNumber": 2},
    ]
    doc = ItineraryDocument.from_payload(payload)
    assert [d.id for d in doc.days] == ["b", "a"]
    assert _numbers(doc) == [1, 2]

    out = doc.to_payload()
    assert out[0]["dayNumber"] == 1
    assert out[0]["activities"] == ["Tram 28"]
    assert set(out[0]["meals"]) == {"breakfast", "lunch", "dinner"}


def test_from_empty_payload():
    assert len(ItineraryDocument.from_payload(None)) == 0
    assert len(ItineraryDocument.from_payload([])) == 0


def test_field_edits():
    doc = ItineraryDocument.default()
    day_id = doc.days[0].id

    doc.set_day_field(day_id, "accommodation", "Hotel Avenida")
    doc.set_meal(day_id, "dinner", "Taberna da Rua")
    doc.set_activity(day_id, 0, "Belem tower")
    index = doc.add_activity(day_id, "Fado night")

    day = doc.days[0]
    assert day.accommodation == "Hotel Avenida"
    assert day.meals.dinner == "Taberna da Rua"
    assert day.activities == ["Belem tower", "Fado night"]
    assert index == 1

    assert doc.delete_activity(day_id, 0) == "Belem tower"
    assert day.activities == ["Fado night"]


def test_field_edit_validation():
    doc = ItineraryDocument.default()
    day_id = doc.days[0].id
    with pytest.raises(ValueError):
        doc.set_day_field(day_id, "dayNumber", "3")
    with pytest.raises(ValueError):
        doc.set_meal(day_id, "brunch", "eggs")
    with pytest.raises(IndexError):
        doc.set_activity(day_id, 4, "nope")


def test_snapshot_is_independent():
    doc = ItineraryDocument.default()
    copy = doc.snapshot()
    doc.set_day_field(doc.days[0].id, "budget", "100 EUR")
    assert copy.days[0].budget == ""


def test_day_accepts_snake_case_names():
    day = Day(day_number=3, accommodation="Hostel")
    assert day.model_dump(by_alias=True)["dayNumber"] == 3


def test_delete_activity_out_of_range_keeps_activities():
    doc = ItineraryDocument.default()
    day_id = doc.days[0].id
    doc.add_activity(day_id, "Belém")
    for index in (2, -1):
        with pytest.raises(IndexError):
            doc.delete_activity(day_id, index)
    assert doc.days[0].activities == ["", "Belém"]
