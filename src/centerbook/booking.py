"""
Reservation flow: date -> slot -> subscription -> submit.

ReservationFlow is a small state machine driven by a front end. It holds one
explicit FlowState instead of per-screen booleans; flags such as
``is_submitting`` are derived from it. The backend stays authoritative for
capacity and subscription validity, so every rejection it sends back is
surfaced as-is, and the slot list is re-fetched after each successful change.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

from .api.base import CenterApiError, HttpError, RequestTimeout, Reservation, ScheduleSlot, Subscription
from .api.center_client import CenterApi
from .api.slot_selection import order_slots

logger = logging.getLogger(__name__)


class FlowState(Enum):
    IDLE = "idle"
    DATE_SELECTED = "date_selected"
    SLOTS_LOADED = "slots_loaded"
    SLOT_SELECTED = "slot_selected"
    SUBSCRIPTIONS_LOADED = "subscriptions_loaded"
    SUBSCRIPTION_SELECTED = "subscription_selected"
    SUBMITTING = "submitting"
    SUCCESS = "success"


class ValidationError(Enum):
    """Local guard failures; these never reach the network."""
    MISSING_SELECTION = "missing_selection"
    ALREADY_SUBMITTING = "already_submitting"


class RejectionKind(Enum):
    SLOT_UNAVAILABLE = "slot_unavailable"
    SUBSCRIPTION_INVALID = "subscription_invalid"
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"


class CancelOutcome(Enum):
    CANCELED = "canceled"
    ALREADY_CANCELED = "already_canceled"


# Checked in order: "already reserved" is a duplicate, not a slot problem,
# but "already full" or "already expired" are not duplicates
_REJECTION_KEYWORDS = [
    (RejectionKind.DUPLICATE, (
        "duplicate", "already_booked", "already_reserved", "already_exists",
        "already_registered", "already_have", "already_has",
    )),
    (RejectionKind.SUBSCRIPTION_INVALID, ("subscription", "expired", "frozen", "inactive", "not_activated")),
    (RejectionKind.SLOT_UNAVAILABLE, ("capacity", "full", "slot", "schedule", "closed", "not_open", "unavailable")),
]

_CAUSE_KEYS = ("cause", "error", "detail", "code", "non_field_errors")


@dataclass(frozen=True)
class BookingRejected:
    """Structured refusal from the backend. ``cause`` is kept verbatim."""
    cause: str
    kind: RejectionKind = RejectionKind.UNKNOWN
    status_code: Optional[int] = None


@dataclass(frozen=True)
class SubmitResult:
    reservation: Optional[Reservation] = None
    rejection: Optional[BookingRejected] = None
    validation_error: Optional[ValidationError] = None

    @property
    def ok(self) -> bool:
        return self.reservation is not None


def _first_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, list) and value:
        return _first_text(value[0])
    return None


def rejection_cause(body: Any, status_code: int) -> str:
    """Find the backend's rejection cause in an error body."""
    if isinstance(body, dict):
        for key in _CAUSE_KEYS:
            cause = _first_text(body.get(key))
            if cause:
                return cause
        # Field errors, e.g. {"schedule": ["Slot is full"]}
        for value in body.values():
            cause = _first_text(value)
            if cause:
                return cause
    else:
        cause = _first_text(body)
        if cause:
            return cause
    return f"http_{status_code}"


def classify_cause(cause: str) -> RejectionKind:
    lowered = cause.lower().replace(" ", "_")
    for kind, keywords in _REJECTION_KEYWORDS:
        if any(k in lowered for k in keywords):
            return kind
    return RejectionKind.UNKNOWN


def rejection_from_error(error: HttpError) -> BookingRejected:
    cause = rejection_cause(error.body, error.status_code)
    return BookingRejected(cause=cause, kind=classify_cause(cause), status_code=error.status_code)


def is_already_canceled(error: HttpError) -> bool:
    if error.status_code == 409:
        return True
    if error.status_code == 400:
        cause = rejection_cause(error.body, error.status_code).lower()
        return "already" in cause and "cancel" in cause
    return False


async def cancel_reservation(api: CenterApi, reservation_id: int) -> CancelOutcome:
    """
    Cancel a reservation. Canceling one that is already canceled is not an error.

    Raises:
        HttpError: Any failure other than "already canceled"
    """
    try:
        await api.cancel_reservation(reservation_id)
    except HttpError as e:
        if not is_already_canceled(e):
            raise
        logger.info("Reservation %s was already canceled (%s)", reservation_id, e.status_code)
        return CancelOutcome.ALREADY_CANCELED
    logger.info("Reservation %s canceled", reservation_id)
    return CancelOutcome.CANCELED


class ReservationFlow:
    """Walks one user through booking a slot of one section."""

    def __init__(self, api: CenterApi, section_id: int, user_id: Optional[int] = None):
        self.api = api
        self.section_id = section_id
        self.user_id = user_id

        self.state = FlowState.IDLE
        self.date: Optional[date] = None
        self.slots: list[ScheduleSlot] = []
        self.subscriptions: list[Subscription] = []
        self.selected_slot: Optional[ScheduleSlot] = None
        self.selected_subscription: Optional[Subscription] = None
        self.last_reservation: Optional[Reservation] = None
        self.last_rejection: Optional[BookingRejected] = None
        self.slots_stale = False

        self._slots_loaded = False
        self._subscriptions_loaded = False
        self._lock = asyncio.Lock()

    # -- derived flags --

    @property
    def is_submitting(self) -> bool:
        return self.state is FlowState.SUBMITTING

    @property
    def can_submit(self) -> bool:
        return (
            not self.is_submitting
            and self.selected_slot is not None
            and self.selected_subscription is not None
        )

    @property
    def has_usable_subscription(self) -> bool:
        return any(s.is_usable for s in self.subscriptions)

    @property
    def needs_subscription(self) -> bool:
        """Subscriptions are loaded but none of them can be used to book."""
        return self._subscriptions_loaded and not self.has_usable_subscription

    def _settle(self) -> None:
        """Derive the resting state from what has been loaded and selected."""
        if self.date is None:
            self.state = FlowState.IDLE
        elif not self._slots_loaded:
            self.state = FlowState.DATE_SELECTED
        elif self.selected_slot is None:
            self.state = FlowState.SLOTS_LOADED
        elif not self._subscriptions_loaded:
            self.state = FlowState.SLOT_SELECTED
        elif self.selected_subscription is None:
            self.state = FlowState.SUBSCRIPTIONS_LOADED
        else:
            self.state = FlowState.SUBSCRIPTION_SELECTED

    # -- transitions --

    def select_date(self, day: date) -> bool:
        if self.is_submitting:
            return False
        self.date = day
        self.slots = []
        self.selected_slot = None
        self._slots_loaded = False
        self.slots_stale = False
        self._settle()
        return True

    async def load_slots(self) -> list[ScheduleSlot]:
        """Fetch the section's slots for the selected date, ordered by start time."""
        if self.date is None:
            raise RuntimeError("Select a date before loading slots")
        async with self._lock:
            await self._fetch_slots()
            if not self.is_submitting:
                self._settle()
        return self.slots

    async def _fetch_slots(self) -> None:
        day = self.date
        slots = await self.api.list_schedule_slots(self.section_id, day)
        if self.date != day:
            # The user picked another date while this one was loading
            return
        self.slots = order_slots(slots)
        self._slots_loaded = True
        self.slots_stale = False
        if self.selected_slot is not None:
            self.selected_slot = next(
                (s for s in self.slots if s.id == self.selected_slot.id and s.is_open), None
            )

    def select_slot(self, slot_id: int) -> bool:
        """Select an open slot. Closed or unknown slots leave the flow untouched."""
        if self.is_submitting or not self._slots_loaded:
            return False
        slot = next((s for s in self.slots if s.id == slot_id), None)
        if slot is None or not slot.is_open:
            return False
        self.selected_slot = slot
        self._settle()
        return True

    async def _resolve_user_id(self) -> int:
        if self.user_id is None:
            user = await self.api.current_user()
            self.user_id = user.id
        return self.user_id

    async def load_subscriptions(self) -> list[Subscription]:
        """
        Fetch the user's subscriptions that an admin has activated.

        An empty list is a valid result; ``needs_subscription`` then tells
        the front end to block submission.
        """
        if self.selected_slot is None:
            raise RuntimeError("Select a slot before loading subscriptions")
        async with self._lock:
            user_id = await self._resolve_user_id()
            subscriptions = await self.api.list_subscriptions(user_id)
            self.subscriptions = [
                s for s in subscriptions
                if s.is_activated_by_admin and s.owner_user_id in (None, user_id)
            ]
            self._subscriptions_loaded = True
            if self.selected_subscription is not None:
                self.selected_subscription = next(
                    (s for s in self.subscriptions
                     if s.id == self.selected_subscription.id and s.is_usable),
                    None,
                )
            if not self.is_submitting:
                self._settle()
        return self.subscriptions

    def select_subscription(self, subscription_id: int) -> bool:
        if self.is_submitting or not self._subscriptions_loaded:
            return False
        subscription = next((s for s in self.subscriptions if s.id == subscription_id), None)
        if subscription is None or not subscription.is_usable:
            return False
        self.selected_subscription = subscription
        self._settle()
        return True

    async def submit(self) -> SubmitResult:
        """
        Reserve the selected slot with the selected subscription.

        Returns:
            SubmitResult holding the new Reservation, the backend's rejection,
            or a local validation error

        Raises:
            CenterApiError: Network, auth and server (5xx) failures; the flow
                is back in SUBSCRIPTION_SELECTED when this propagates
        """
        # Checked before the first await so a second call cannot slip through
        if self.is_submitting:
            return SubmitResult(validation_error=ValidationError.ALREADY_SUBMITTING)
        if self.selected_slot is None or self.selected_subscription is None:
            return SubmitResult(validation_error=ValidationError.MISSING_SELECTION)

        self.state = FlowState.SUBMITTING
        slot = self.selected_slot
        subscription = self.selected_subscription
        try:
            async with self._lock:
                try:
                    reservation = await self.api.create_record(slot.id, subscription.id)
                except HttpError as e:
                    if not 400 <= e.status_code < 500:
                        raise
                    return self._reject(rejection_from_error(e))
                except RequestTimeout:
                    return self._reject(BookingRejected(cause="timeout"))

                logger.info("Booked slot %s (reservation %s)", slot.id, reservation.id)
                self.last_reservation = reservation
                self.last_rejection = None
                self.selected_slot = None
                await self._refresh_slots_after_change()
                self.state = FlowState.SUCCESS
                return SubmitResult(reservation=reservation)
        finally:
            if self.is_submitting:
                self._settle()

    def _reject(self, rejection: BookingRejected) -> SubmitResult:
        logger.info("Booking rejected: %s (%s)", rejection.cause, rejection.kind.value)
        self.last_rejection = rejection
        self._settle()
        return SubmitResult(rejection=rejection)

    async def _refresh_slots_after_change(self) -> None:
        # Reserved counts are shared by every client, so the local copy is stale now
        try:
            await self._fetch_slots()
        except CenterApiError as e:
            logger.warning("Could not refresh slots for %s: %s", self.date, e)
            self.slots_stale = True

    async def cancel(self, reservation_id: int) -> CancelOutcome:
        """Cancel a previously made reservation and refresh the slot list."""
        outcome = await cancel_reservation(self.api, reservation_id)
        if self.last_reservation is not None and self.last_reservation.id == reservation_id:
            self.last_reservation.is_canceled = True
        if self._slots_loaded and not self.is_submitting:
            async with self._lock:
                await self._refresh_slots_after_change()
        return outcome
