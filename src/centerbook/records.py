"""Calendar view of the user's reservations."""

from datetime import date

from .api.base import Reservation
from .api.center_client import CenterApi


def _start_key(record: Reservation):
    return (record.slot.start_time, record.id)


def records_by_date(records: list[Reservation]) -> dict[date, list[Reservation]]:
    """Group reservations by slot date; each day is ordered by start time."""
    grouped: dict[date, list[Reservation]] = {}
    for record in records:
        if record.slot is None:
            continue
        grouped.setdefault(record.slot.date, []).append(record)
    for day_records in grouped.values():
        day_records.sort(key=_start_key)
    return dict(sorted(grouped.items()))


def marked_dates(records: list[Reservation]) -> set[date]:
    return set(records_by_date(records))


def records_on(records: list[Reservation], day: date) -> list[Reservation]:
    return records_by_date(records).get(day, [])


async def load_records(api: CenterApi) -> dict[date, list[Reservation]]:
    return records_by_date(await api.list_records())
