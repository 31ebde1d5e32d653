from datetime import time

import pytest

from centerbook.api.base import ScheduleSlot
from centerbook.api.slot_selection import order_slots, parse_time, select_best_slot, selectable_slots

from conftest import slot_json


def make_slots(*specs):
    return [ScheduleSlot.from_json(slot_json(id, start, **kw)) for id, start, kw in specs]


def test_order_slots_breaks_ties_by_id():
    slots = make_slots((9, "10:00:00", {}), (2, "10:00:00", {}), (5, "08:00:00", {}))
    assert [s.id for s in order_slots(slots)] == [5, 2, 9]


def test_selectable_slots_skips_closed():
    slots = make_slots((1, "10:00:00", {"reserved": 5}), (2, "11:00:00", {}))
    assert [s.id for s in selectable_slots(slots)] == [2]


def test_select_best_slot_prefers_closest_open_slot():
    slots = make_slots(
        (1, "17:00:00", {}),
        (2, "18:00:00", {"status": False}),
        (3, "18:30:00", {}),
        (4, "20:00:00", {}),
    )
    assert select_best_slot(slots, time(18, 0)).id == 3


def test_select_best_slot_equal_distance_takes_earlier():
    slots = make_slots((1, "19:00:00", {}), (2, "17:00:00", {}))
    assert select_best_slot(slots, time(18, 0)).id == 2


def test_select_best_slot_respects_window():
    slots = make_slots((1, "07:00:00", {}), (2, "22:00:00", {}))
    assert select_best_slot(slots, time(18, 0), earliest=time(8, 0), latest=time(21, 0)) is None
    assert select_best_slot([], time(18, 0)) is None


@pytest.mark.parametrize("value,expected", [
    ("19:00", time(19, 0)),
    ("7:30", time(7, 30)),
    ("18:15:00", time(18, 15)),
])
def test_parse_time(value, expected):
    assert parse_time(value) == expected


def test_parse_time_rejects_garbage():
    with pytest.raises(ValueError):
        parse_time("soon")
