"""
Shared types for the activity-center booking backend.

Every model mirrors one backend resource and is built from the JSON the
REST API returns. All client errors derive from CenterApiError so the CLI
and the reservation flow can handle any failure through a single base class.
"""

from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from typing import Any, Optional


class CenterApiError(Exception):
    """Base exception for booking backend errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NetworkFailure(CenterApiError):
    """The request never got a response (DNS, connection reset, ...)."""


class RequestTimeout(CenterApiError):
    """No response within the configured timeout."""


class HttpError(CenterApiError):
    """Non-2xx response that is not handled by the auth layer."""

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {extract_message(body)}")

    @property
    def detail(self) -> str:
        return extract_message(self.body)


class AuthError(CenterApiError):
    """Authentication can no longer be recovered; the user must log in again."""


class SessionExpired(AuthError):
    pass


class NoRefreshToken(AuthError):
    pass


class ConfigError(CenterApiError):
    pass


class MalformedResponse(CenterApiError):
    """The backend answered with data this client cannot interpret."""


GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."


def extract_message(body: Any) -> str:
    """Pull a human readable message out of an error body, or fall back to generic text."""
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    elif isinstance(body, str) and body.strip():
        return body.strip()
    return GENERIC_ERROR_MESSAGE


def ref_id(value: Any) -> Optional[int]:
    """Foreign keys come back either as a bare id or as a nested object."""
    if isinstance(value, dict):
        value = value.get("id")
    return int(value) if value is not None else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value[:10]) if value else None


def _parse_time(value: str) -> time:
    return time.fromisoformat(value)


@dataclass
class User:
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    role: str = "USER"
    is_active: bool = True
    is_verified: bool = False

    @classmethod
    def from_json(cls, data: dict) -> "User":
        return cls(
            id=int(data["id"]),
            email=data.get("email", ""),
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            phone_number=data.get("phone_number", ""),
            role=data.get("role", "USER"),
            is_active=bool(data.get("is_active", True)),
            is_verified=bool(data.get("is_verified", False)),
        )


@dataclass
class Center:
    id: int
    name: str
    location: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    qr_code: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_json(cls, data: dict) -> "Center":
        lat = data.get("latitude")
        lng = data.get("longitude")
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            location=data.get("location") or "",
            latitude=float(lat) if lat is not None else None,
            longitude=float(lng) if lng is not None else None,
            qr_code=data.get("qr_code"),
            image=data.get("image"),
            description=data.get("description"),
        )


@dataclass
class Category:
    id: int
    name: str
    image: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict) -> "Category":
        return cls(id=int(data["id"]), name=data.get("name", ""), image=data.get("image"))


@dataclass
class Section:
    id: int
    name: str
    category_id: Optional[int] = None
    center_ids: list[int] = field(default_factory=list)
    image: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict) -> "Section":
        # Older backends expose a single "center" FK instead of "centers"
        centers = data.get("centers")
        if centers is None and data.get("center") is not None:
            centers = [data["center"]]
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            category_id=ref_id(data.get("category")),
            center_ids=[ref_id(c) for c in centers or []],
            image=data.get("image"),
            description=data.get("description"),
        )


@dataclass
class ScheduleSlot:
    """One bookable time window of a section."""
    id: int
    section_id: int
    date: date
    start_time: time
    end_time: time
    capacity: int
    reserved: int
    is_open: bool
    meeting_link: Optional[str] = None

    @property
    def spots_left(self) -> int:
        return max(self.capacity - self.reserved, 0)

    @classmethod
    def from_json(cls, data: dict) -> "ScheduleSlot":
        capacity = int(data.get("capacity", 0))
        reserved = int(data.get("reserved", 0))
        is_open = data.get("is_open", data.get("status", True))
        return cls(
            id=int(data["id"]),
            section_id=ref_id(data.get("section")),
            date=_parse_date(data["date"]),
            start_time=_parse_time(data["start_time"]),
            end_time=_parse_time(data["end_time"]),
            capacity=capacity,
            reserved=reserved,
            # A full slot is closed regardless of what the flag says
            is_open=bool(is_open) and reserved < capacity,
            meeting_link=data.get("meeting_link") or None,
        )


class SubscriptionType(str, Enum):
    MONTH = "MONTH"
    SIX_MONTHS = "6_MONTHS"
    YEAR = "YEAR"


@dataclass
class Subscription:
    id: int
    owner_user_id: Optional[int]
    type: SubscriptionType
    start_date: Optional[date]
    end_date: Optional[date]
    is_active: bool
    is_activated_by_admin: bool
    is_frozen: bool = False
    frozen_start_date: Optional[date] = None
    frozen_end_date: Optional[date] = None
    name: str = ""
    section_id: Optional[int] = None

    @property
    def is_usable(self) -> bool:
        """Whether this subscription may be used to reserve a slot."""
        return self.is_activated_by_admin and self.is_active and not self.is_frozen

    @classmethod
    def from_json(cls, data: dict) -> "Subscription":
        raw_type = data.get("type", SubscriptionType.MONTH.value)
        try:
            subscription_type = SubscriptionType(raw_type)
        except ValueError:
            raise MalformedResponse(
                f"Unknown subscription type {raw_type!r} for subscription {data.get('id')}"
            )
        return cls(
            id=int(data["id"]),
            owner_user_id=ref_id(data.get("user")),
            type=subscription_type,
            start_date=_parse_date(data.get("start_date")),
            end_date=_parse_date(data.get("end_date")),
            is_active=bool(data.get("is_active", False)),
            is_activated_by_admin=bool(data.get("is_activated_by_admin", False)),
            is_frozen=bool(data.get("is_frozen", False)),
            frozen_start_date=_parse_date(data.get("frozen_start_date")),
            frozen_end_date=_parse_date(data.get("frozen_end_date")),
            name=data.get("name") or "",
            section_id=ref_id(data.get("section")),
        )


@dataclass
class Reservation:
    """A booking (backend "record") linking a user, a slot and a subscription."""
    id: int
    schedule_slot_id: Optional[int]
    subscription_id: Optional[int]
    user_id: Optional[int]
    attended: bool = False
    is_canceled: bool = False
    slot: Optional[ScheduleSlot] = None
    subscription_name: str = ""

    @classmethod
    def from_json(cls, data: dict) -> "Reservation":
        schedule = data.get("schedule")
        subscription = data.get("subscription")
        return cls(
            id=int(data["id"]),
            schedule_slot_id=ref_id(schedule),
            subscription_id=ref_id(subscription),
            user_id=ref_id(data.get("user")),
            attended=bool(data.get("attended", False)),
            is_canceled=bool(data.get("is_canceled", False)),
            slot=ScheduleSlot.from_json(schedule) if isinstance(schedule, dict) else None,
            subscription_name=(subscription or {}).get("name", "") if isinstance(subscription, dict) else "",
        )
