"""
Typed wrappers around the booking backend's REST endpoints.

CenterApi turns raw responses from AuthenticatedClient into the dataclasses
from base.py. It holds no state of its own: every call goes to the backend,
which owns capacity counts, subscription validity and attendance.
"""

import logging
from datetime import date
from typing import Any, Optional

from .base import Category, Center, Reservation, ScheduleSlot, Section, Subscription, SubscriptionType, User
from .http_client import AuthenticatedClient, decode_body

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "REGISTER": "user/users/",
    "LOGIN": "user/login/",
    "USER": "user/user/",
    "CENTERS": "api/centers/",
    "SECTIONS": "api/sections/",
    "CATEGORIES": "api/section-categories/",
    "SCHEDULES": "api/schedules/",
    "SUBSCRIPTIONS": "api/subscriptions/",
    "RECORDS": "api/records/",
    "CONFIRM_ATTENDANCE": "api/records/confirm_attendance/",
    "CANCEL_RESERVATION": "api/records/cancel_reservation/",
}


def results(data: Any) -> list:
    """List endpoints answer either a bare list (page=all) or a paginated object."""
    if data is None:
        return []
    if isinstance(data, dict):
        return data.get("results", [])
    return list(data)


class CenterApi:
    """Client for the centers / sections / schedules / records API."""

    def __init__(self, http: AuthenticatedClient):
        self.http = http

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        response = await self.http.get(path, params=params)
        return decode_body(response)

    async def _post_json(self, path: str, payload: Optional[dict] = None) -> Any:
        response = await self.http.post(path, json=payload)
        return decode_body(response)

    async def _list(self, path: str, params: Optional[dict] = None) -> list:
        query = {"page": "all"}
        query.update({k: v for k, v in (params or {}).items() if v is not None})
        return results(await self._get_json(path, query))

    # -- user --

    async def current_user(self) -> User:
        return User.from_json(await self._get_json(ENDPOINTS["USER"]))

    # -- catalog --

    async def list_centers(self, search: Optional[str] = None) -> list[Center]:
        """List centers, optionally narrowed by the backend's name search."""
        params = {"search": search or None}
        return [Center.from_json(c) for c in await self._list(ENDPOINTS["CENTERS"], params)]

    async def get_center(self, center_id: int) -> Center:
        return Center.from_json(await self._get_json(f"{ENDPOINTS['CENTERS']}{center_id}/"))

    async def list_sections(
        self,
        center_id: Optional[int] = None,
        category_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[Section]:
        params = {"center": center_id, "category": category_id, "search": search or None}
        return [Section.from_json(s) for s in await self._list(ENDPOINTS["SECTIONS"], params)]

    async def get_section(self, section_id: int) -> Section:
        return Section.from_json(await self._get_json(f"{ENDPOINTS['SECTIONS']}{section_id}/"))

    async def list_categories(self) -> list[Category]:
        return [Category.from_json(c) for c in await self._list(ENDPOINTS["CATEGORIES"])]

    # -- schedules --

    async def list_schedule_slots(self, section_id: int, day: date) -> list[ScheduleSlot]:
        """
        Fetch every slot of a section on one date.

        Closed and full slots are included; callers decide what is selectable.
        """
        params = {"section": section_id, "date": day.isoformat()}
        slots = [ScheduleSlot.from_json(s) for s in await self._list(ENDPOINTS["SCHEDULES"], params)]
        # Some backend versions ignore the date filter
        return [s for s in slots if s.date == day]

    # -- subscriptions --

    async def list_subscriptions(self, user_id: int) -> list[Subscription]:
        params = {"user_id": user_id}
        return [Subscription.from_json(s) for s in await self._list(ENDPOINTS["SUBSCRIPTIONS"], params)]

    async def get_subscription(self, subscription_id: int) -> Subscription:
        return Subscription.from_json(await self._get_json(f"{ENDPOINTS['SUBSCRIPTIONS']}{subscription_id}/"))

    async def purchase_subscription(
        self,
        subscription_type: SubscriptionType,
        section_id: Optional[int] = None,
    ) -> Subscription:
        payload = {"type": SubscriptionType(subscription_type).value}
        if section_id is not None:
            payload["section"] = section_id
        return Subscription.from_json(await self._post_json(ENDPOINTS["SUBSCRIPTIONS"], payload))

    async def freeze_subscription(self, subscription_id: int, freeze_days: int) -> Any:
        path = f"{ENDPOINTS['SUBSCRIPTIONS']}{subscription_id}/freeze/"
        return await self._post_json(path, {"freeze_days": freeze_days})

    async def unfreeze_subscription(self, subscription_id: int) -> Any:
        return await self._post_json(f"{ENDPOINTS['SUBSCRIPTIONS']}{subscription_id}/unfreeze/")

    # -- records --

    async def list_records(
        self,
        attended: Optional[bool] = None,
        section_id: Optional[int] = None,
    ) -> list[Reservation]:
        params = {
            "attended": None if attended is None else str(attended).lower(),
            "schedule__section": section_id,
        }
        return [Reservation.from_json(r) for r in await self._list(ENDPOINTS["RECORDS"], params)]

    async def create_record(self, schedule_id: int, subscription_id: int) -> Reservation:
        payload = {"schedule": schedule_id, "subscription": subscription_id}
        data = await self._post_json(ENDPOINTS["RECORDS"], payload)
        logger.info("Reserved slot %s with subscription %s", schedule_id, subscription_id)
        return Reservation.from_json(data)

    async def confirm_attendance(self, record_id: int) -> Any:
        return await self._post_json(ENDPOINTS["CONFIRM_ATTENDANCE"], {"record_id": record_id})

    async def cancel_reservation(self, record_id: int) -> Any:
        return await self._post_json(ENDPOINTS["CANCEL_RESERVATION"], {"record_id": record_id})
