#!/usr/bin/env python3
"""
CLI for booking classes at activity centers.

Example usage:
    centerbook login me@example.com s3cretpass1
    centerbook slots 12 2026-02-19
    centerbook book 12 2026-02-19 --best 18:00 --earliest 17:00 --latest 20:00 --subscription 2

Check in at a center by passing the scanned QR payload:
    centerbook attend "{'section_id': 12}"
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime
from pathlib import Path

from .api.auth import AuthService
from .api.base import AuthError, CenterApiError, SubscriptionType
from .api.center_client import CenterApi
from .api.client_factory import create_client, load_config
from .api.slot_selection import parse_time, select_best_slot
from .attendance import confirm_attendance, scan
from .booking import RejectionKind, ReservationFlow, ValidationError, cancel_reservation
from .records import load_records
from .subscriptions import SubscriptionManager

# src/centerbook/cli.py -> project root
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config.json"


def parse_date(date_str: str) -> date:
    """Parse a YYYY-MM-DD argument."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date format '{date_str}'. Use YYYY-MM-DD.")


def parse_clock(time_str: str):
    try:
        return parse_time(time_str)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def format_slot(slot) -> str:
    status = "open" if slot.is_open else "closed"
    return (
        f"  [{slot.id}] {slot.start_time:%H:%M}-{slot.end_time:%H:%M}  "
        f"{slot.reserved}/{slot.capacity} reserved  ({status})"
    )


def format_subscription(sub) -> str:
    flags = []
    if not sub.is_activated_by_admin:
        flags.append("awaiting activation")
    if sub.is_frozen:
        until = f" until {sub.frozen_end_date}" if sub.frozen_end_date else ""
        flags.append(f"frozen{until}")
    if not sub.is_active:
        flags.append("inactive")
    state = ", ".join(flags) if flags else "usable"
    period = f"{sub.start_date or '?'} - {sub.end_date or '?'}"
    name = f" {sub.name}" if sub.name else ""
    return f"  [{sub.id}]{name} {sub.type.value}  {period}  ({state})"


# -- commands --

async def cmd_login(args, http, api) -> int:
    await AuthService(http).login(args.email, args.password)
    print(f"Logged in as {args.email}")
    return 0


async def cmd_logout(args, http, api) -> int:
    AuthService(http).logout()
    print("Logged out.")
    return 0


async def cmd_whoami(args, http, api) -> int:
    user = await AuthService(http).current_user()
    if user is None:
        print("Not logged in.")
        return 1
    print(f"{user.first_name} {user.last_name} <{user.email}> (id {user.id}, {user.role})")
    return 0


async def cmd_register(args, http, api) -> int:
    try:
        user = await AuthService(http).register(
            email=args.email,
            password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            phone_number=args.phone,
            iin=args.iin,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Registered {user.email}. Activate the account with the link sent by email.")
    return 0


async def cmd_centers(args, http, api) -> int:
    centers = await api.list_centers(search=args.search)
    if args.with_coordinates:
        centers = [c for c in centers if c.has_coordinates]
    if not centers:
        print("No centers found.")
        return 0
    for c in centers:
        coords = f"  ({c.latitude}, {c.longitude})" if c.has_coordinates else ""
        print(f"  [{c.id}] {c.name} - {c.location}{coords}")
    return 0


async def cmd_sections(args, http, api) -> int:
    if args.center is not None:
        center = await api.get_center(args.center)
        print(f"Sections at {center.name}:")
    sections = await api.list_sections(
        center_id=args.center, category_id=args.category, search=args.search
    )
    if not sections:
        print("No sections found.")
        return 0
    for s in sections:
        print(f"  [{s.id}] {s.name}")
    return 0


async def cmd_categories(args, http, api) -> int:
    for c in await api.list_categories():
        print(f"  [{c.id}] {c.name}")
    return 0


async def cmd_slots(args, http, api) -> int:
    flow = ReservationFlow(api, args.section)
    flow.select_date(args.date)
    slots = await flow.load_slots()
    if not slots:
        print(f"No classes on {args.date}.")
        return 0
    print(f"Classes on {args.date}:")
    for slot in slots:
        print(format_slot(slot))
    return 0


async def cmd_book(args, http, api) -> int:
    if args.date < date.today():
        print(f"Error: Date '{args.date}' is in the past.")
        return 1

    flow = ReservationFlow(api, args.section)
    flow.select_date(args.date)
    slots = await flow.load_slots()
    print(f"Found {len(slots)} classes on {args.date}")

    if args.slot is not None:
        slot_id = args.slot
    else:
        best = select_best_slot(slots, args.best, args.earliest, args.latest)
        if best is None:
            print("No open class matches the preferred times.")
            return 1
        slot_id = best.id

    if not flow.select_slot(slot_id):
        print(f"Class {slot_id} is full, closed or not on this date.")
        return 1
    print(f"Selected:{format_slot(flow.selected_slot)[1:]}")

    await flow.load_subscriptions()
    if flow.needs_subscription:
        print("You have no usable subscription. Buy one with: centerbook buy MONTH")
        return 1
    if not flow.select_subscription(args.subscription):
        print(f"Subscription {args.subscription} cannot be used. Usable subscriptions:")
        for sub in flow.subscriptions:
            if sub.is_usable:
                print(format_subscription(sub))
        return 1

    if args.dry_run:
        print()
        print("=" * 50)
        print("DRY RUN - Would book this class (no reservation made)")
        print(f"  Class:        {flow.selected_slot.id}")
        print(f"  Subscription: {flow.selected_subscription.id}")
        print("=" * 50)
        return 0

    result = await flow.submit()
    if result.ok:
        print()
        print("=" * 50)
        print("SUCCESS! Reservation confirmed.")
        print(f"  Reservation ID: {result.reservation.id}")
        print("=" * 50)
        return 0

    if result.validation_error is ValidationError.MISSING_SELECTION:
        print("Select a class and a subscription first.")
    elif result.validation_error is not None:
        print("A booking is already in progress.")
    elif result.rejection.kind is RejectionKind.SLOT_UNAVAILABLE:
        print(f"Class no longer available ({result.rejection.cause}). Pick another one.")
    elif result.rejection.kind is RejectionKind.SUBSCRIPTION_INVALID:
        print(f"Subscription cannot be used ({result.rejection.cause}). Obtain a valid subscription.")
    elif result.rejection.kind is RejectionKind.DUPLICATE:
        print(f"You already booked this class ({result.rejection.cause}).")
    else:
        print(f"Booking rejected: {result.rejection.cause}")
    return 1


async def cmd_records(args, http, api) -> int:
    by_date = await load_records(api)
    if args.date:
        by_date = {args.date: by_date.get(args.date, [])}
    if not any(by_date.values()):
        print("No reservations.")
        return 0
    for day, records in by_date.items():
        print(f"{day}:")
        for r in records:
            status = "canceled" if r.is_canceled else ("attended" if r.attended else "booked")
            print(
                f"  [{r.id}] {r.slot.start_time:%H:%M}-{r.slot.end_time:%H:%M}  "
                f"{r.subscription_name or 'subscription ' + str(r.subscription_id)}  ({status})"
            )
            if r.slot.meeting_link:
                print(f"      {r.slot.meeting_link}")
    return 0


async def cmd_cancel(args, http, api) -> int:
    outcome = await cancel_reservation(api, args.record)
    print(f"Reservation {args.record}: {outcome.value.replace('_', ' ')}.")
    return 0


async def cmd_subscriptions(args, http, api) -> int:
    subscriptions = await SubscriptionManager(api).fetch_all()
    if not subscriptions:
        print("No subscriptions.")
        return 0
    for sub in subscriptions:
        print(format_subscription(sub))
    return 0


async def cmd_buy(args, http, api) -> int:
    sub = await SubscriptionManager(api).purchase(SubscriptionType(args.type), args.section)
    print("Subscription created. It can be used once an administrator activates it.")
    print(format_subscription(sub))
    return 0


async def cmd_freeze(args, http, api) -> int:
    try:
        sub = await SubscriptionManager(api).freeze(args.subscription, args.days)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(format_subscription(sub))
    return 0


async def cmd_unfreeze(args, http, api) -> int:
    sub = await SubscriptionManager(api).unfreeze(args.subscription)
    print(format_subscription(sub))
    return 0


async def cmd_attend(args, http, api) -> int:
    check_in = await scan(api, args.payload)
    print(f"Section: {check_in.section.name}")
    if not check_in.records:
        print("No reservations awaiting check-in for this section.")
        return 1

    if args.record is None and len(check_in.records) > 1:
        print("Several reservations await check-in; pick one with --record:")
        for r in check_in.records:
            when = f"{r.slot.date} {r.slot.start_time:%H:%M}" if r.slot else f"class {r.schedule_slot_id}"
            print(f"  [{r.id}] {when}")
        return 1

    record_id = args.record if args.record is not None else check_in.records[0].id
    if record_id not in {r.id for r in check_in.records}:
        print(f"Reservation {record_id} is not awaiting check-in for this section.")
        return 1

    await confirm_attendance(api, record_id)
    print(f"Attendance confirmed for reservation {record_id}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="centerbook",
        description="centerbook - book classes at activity centers",
        epilog="Example: centerbook book 12 2026-02-19 --best 18:00 --subscription 2",
    )
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH),
                        help=f"Path to config.json (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log HTTP and token activity")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Log in and store the session")
    p.add_argument("email")
    p.add_argument("password")
    p.set_defaults(handler=cmd_login)

    sub.add_parser("logout", help="Forget the stored session").set_defaults(handler=cmd_logout)
    sub.add_parser("whoami", help="Show the logged in user").set_defaults(handler=cmd_whoami)

    p = sub.add_parser("register", help="Create an account")
    p.add_argument("email")
    p.add_argument("password")
    p.add_argument("--first-name", required=True)
    p.add_argument("--last-name", required=True)
    p.add_argument("--phone", required=True)
    p.add_argument("--iin", default="")
    p.set_defaults(handler=cmd_register)

    p = sub.add_parser("centers", help="List centers")
    p.add_argument("--with-coordinates", action="store_true",
                   help="Only centers that can be shown on a map")
    p.add_argument("--search", help="Filter centers by name")
    p.set_defaults(handler=cmd_centers)

    p = sub.add_parser("sections", help="List sections")
    p.add_argument("--center", type=int)
    p.add_argument("--category", type=int)
    p.add_argument("--search", help="Filter sections by name")
    p.set_defaults(handler=cmd_sections)

    sub.add_parser("categories", help="List section categories").set_defaults(handler=cmd_categories)

    p = sub.add_parser("slots", help="List a section's classes on a date")
    p.add_argument("section", type=int)
    p.add_argument("date", type=parse_date)
    p.set_defaults(handler=cmd_slots)

    p = sub.add_parser("book", help="Reserve a class")
    p.add_argument("section", type=int)
    p.add_argument("date", type=parse_date)
    choice = p.add_mutually_exclusive_group(required=True)
    choice.add_argument("--slot", type=int, help="Class id to book")
    choice.add_argument("--best", type=parse_clock, help="Ideal start time (e.g., '18:00')")
    p.add_argument("--earliest", type=parse_clock, help="Earliest acceptable start time")
    p.add_argument("--latest", type=parse_clock, help="Latest acceptable start time")
    p.add_argument("--subscription", type=int, required=True, help="Subscription id to book with")
    p.add_argument("--dry-run", action="store_true",
                   help="Select the class and subscription but don't actually book")
    p.set_defaults(handler=cmd_book)

    p = sub.add_parser("records", help="Show your reservations")
    p.add_argument("--date", type=parse_date)
    p.set_defaults(handler=cmd_records)

    p = sub.add_parser("cancel", help="Cancel a reservation")
    p.add_argument("record", type=int)
    p.set_defaults(handler=cmd_cancel)

    sub.add_parser("subscriptions", help="List your subscriptions").set_defaults(handler=cmd_subscriptions)

    p = sub.add_parser("buy", help="Purchase a subscription")
    p.add_argument("type", choices=[t.value for t in SubscriptionType])
    p.add_argument("--section", type=int)
    p.set_defaults(handler=cmd_buy)

    p = sub.add_parser("freeze", help="Freeze a subscription")
    p.add_argument("subscription", type=int)
    p.add_argument("days", type=int)
    p.set_defaults(handler=cmd_freeze)

    p = sub.add_parser("unfreeze", help="Unfreeze a subscription")
    p.add_argument("subscription", type=int)
    p.set_defaults(handler=cmd_unfreeze)

    p = sub.add_parser("attend", help="Confirm attendance from a scanned QR payload")
    p.add_argument("payload")
    p.add_argument("--record", type=int, help="Reservation to confirm when several are pending")
    p.set_defaults(handler=cmd_attend)

    return parser


async def run_command(args, transport=None) -> int:
    try:
        config = load_config(args.config)
    except CenterApiError as e:
        print(f"Error: {e}")
        return 1

    http = create_client(config, transport=transport)
    # A rejected refresh token means the stored session is useless
    http.on_session_expired = http.session.clear

    async with http:
        api = CenterApi(http)
        try:
            return await args.handler(args, http, api)
        except AuthError as e:
            print(f"Error: {e}")
            print("Log in again with: centerbook login EMAIL PASSWORD")
            return 1
        except CenterApiError as e:
            print(f"Error: {e}")
            return 1


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        logging.getLogger("httpx").setLevel(logging.WARNING)

    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()
