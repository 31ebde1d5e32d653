import asyncio
from datetime import date

from conftest import slot_json


def test_list_centers_forwards_search(backend, make_api):
    seen = []

    def centers(request):
        seen.append(dict(request.url.params))
        return 200, [{"id": 1, "name": "Aqua Center", "location": "Abay 10"}]

    backend.route("GET", "api/centers/", handler=centers)
    api = make_api()

    async def scenario():
        return await api.list_centers(search="aqua"), await api.list_centers()

    found, everything = asyncio.run(scenario())

    assert [c.name for c in found] == ["Aqua Center"]
    assert seen[0] == {"page": "all", "search": "aqua"}
    assert seen[1] == {"page": "all"}
    assert len(everything) == 1


def test_list_sections_filters(backend, make_api):
    seen = {}

    def sections(request):
        seen.update(request.url.params)
        return 200, {"count": 1, "results": [{"id": 3, "name": "Yoga", "centers": [{"id": 1}]}]}

    backend.route("GET", "api/sections/", handler=sections)

    sections = asyncio.run(make_api().list_sections(center_id=1, search="yo"))

    assert seen == {"page": "all", "center": "1", "search": "yo"}
    assert sections[0].center_ids == [1]


def test_get_center(backend, make_api):
    backend.route("GET", "api/centers/4/", body={"id": 4, "name": "Sport Palace", "latitude": 43.2, "longitude": 76.9})

    center = asyncio.run(make_api().get_center(4))

    assert center.name == "Sport Palace"
    assert center.has_coordinates


def test_schedule_slots_outside_the_date_are_dropped(backend, make_api):
    backend.route("GET", "api/schedules/", body=[
        slot_json(1, "10:00:00", day="2024-06-01"),
        slot_json(2, "10:00:00", day="2024-06-02"),
    ])

    slots = asyncio.run(make_api().list_schedule_slots(7, date(2024, 6, 1)))

    assert [s.id for s in slots] == [1]
