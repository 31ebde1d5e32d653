"""
QR check-in.

Each center shows a QR code per section. Its payload is a small dict such as
``{'section_id': 3}``. Scanning it lists the user's unattended reservations
for that section so one of them can be confirmed.
"""

import json
import logging
from dataclasses import dataclass, field

from .api.base import CenterApiError, Reservation, Section
from .api.center_client import CenterApi

logger = logging.getLogger(__name__)


class QRCodeError(CenterApiError):
    """The scanned payload is not a section QR code."""


@dataclass
class CheckIn:
    section: Section
    records: list[Reservation] = field(default_factory=list)


def parse_qr_payload(data: str) -> int:
    """
    Extract the section id from a scanned QR payload.

    The printed codes use Python-style quoting and sometimes escaped
    characters, so quotes are normalized before decoding.

    Raises:
        QRCodeError: If the payload does not carry an integer section_id
    """
    corrected = data.strip().replace("'", '"').replace("\\", "")
    try:
        payload = json.loads(corrected)
    except json.JSONDecodeError:
        raise QRCodeError(f"Unrecognized QR code: {data!r}")

    if not isinstance(payload, dict) or "section_id" not in payload:
        raise QRCodeError(f"QR code has no section_id: {data!r}")
    try:
        return int(payload["section_id"])
    except (TypeError, ValueError):
        raise QRCodeError(f"Invalid section_id in QR code: {payload['section_id']!r}")


async def scan(api: CenterApi, data: str) -> CheckIn:
    """Resolve a QR payload to its section and the reservations awaiting check-in."""
    section_id = parse_qr_payload(data)
    records = await api.list_records(attended=False, section_id=section_id)
    section = await api.get_section(section_id)
    pending = [r for r in records if not r.attended and not r.is_canceled]
    logger.debug("Section %s has %d reservations awaiting check-in", section_id, len(pending))
    return CheckIn(section=section, records=pending)


async def confirm_attendance(api: CenterApi, record_id: int) -> None:
    await api.confirm_attendance(record_id)
    logger.info("Attendance confirmed for reservation %s", record_id)
