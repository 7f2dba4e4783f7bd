"""Read-only views over the attendance ledgers.

Everything here is recomputed from the stored logs on every call.
"""
import logging
import math
from typing import Optional

from pydantic import ValidationError

from markit.database.store import TreeStore
from markit.schemas.attendance import AttendanceMatrix, AttendanceRecord, LogPage
from markit.services.errors import ShareUrlMissing, UserNotFound
from markit.services.session_service import load_card
from markit.utils.clock import TIMEZONE, parse_timestamp
from markit.utils.geodesy import distance_meters

PAGE_SIZE = 10


def _checkin_time(record: AttendanceRecord):
    return parse_timestamp(record.checkin.timestamp)


def _valid_records(entries: dict) -> list[AttendanceRecord]:
    records = []
    for key, entry in (entries or {}).items():
        try:
            records.append(AttendanceRecord.model_validate(entry))
        except ValidationError:
            logging.warning(f"Skipping malformed log entry {key}")
    return records


def daily_log(store: TreeStore, card_id: str, date: str) -> list[AttendanceRecord]:
    """Records filed under ``date``, latest check-in first."""
    records = _valid_records(store.read(f"cards/{card_id}/logs/{date}"))
    records.sort(key=_checkin_time, reverse=True)
    return records


def paginate(records: list, page: int = 1, page_size: int = PAGE_SIZE) -> LogPage:
    page = max(page, 1)
    start = (page - 1) * page_size
    return LogPage(
        items=records[start : start + page_size],
        page=page,
        totalPages=math.ceil(len(records) / page_size),
        total=len(records),
    )


def attendance_matrix(store: TreeStore, card_id: str) -> AttendanceMatrix:
    """Presence of every roster user on every day that has a log.

    A user is present on a day when any of that day's log records carries
    their id and a check-in time; checkout state does not matter.
    """
    card = load_card(store, card_id)

    users = sorted(
        ({"id": u.id, "name": u.name} for u in card.users.values()),
        key=lambda u: u["name"].lower(),
    )
    dates = sorted(card.logs)

    presence: dict[str, dict[str, bool]] = {u["id"]: {} for u in users}
    for date in dates:
        day = card.logs.get(date) or {}
        present = set()
        if isinstance(day, dict):
            for entry in day.values():
                if not isinstance(entry, dict):
                    continue
                checkin = entry.get("checkin") or {}
                if entry.get("userId") and checkin.get("timestamp"):
                    present.add(entry["userId"])
        for user in users:
            presence[user["id"]][date] = user["id"] in present

    return AttendanceMatrix(users=users, dates=dates, presence=presence)


def user_history(store: TreeStore, card_id: str, user_key: str) -> list[AttendanceRecord]:
    card = load_card(store, card_id)
    user = card.users.get(user_key)
    if user is None:
        raise UserNotFound()
    return sorted(user.attendance.values(), key=_checkin_time, reverse=True)


def is_checked_in(store: TreeStore, card_id: str, user_key: str, session_id: str) -> bool:
    """True while the user has an open (not checked out) record for the session."""
    entries = store.read(f"cards/{card_id}/users/{user_key}/attendance")
    if not isinstance(entries, dict):
        return False
    for entry in entries.values():
        if isinstance(entry, dict) and entry.get("sessionId") == session_id and not entry.get("checkout"):
            return True
    return False


# ---------------------------------------- Export helpers
def format_duration(start: str, end: Optional[str]) -> str:
    if not end:
        return "—"
    minutes = round((parse_timestamp(end) - parse_timestamp(start)).total_seconds() / 60)
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


def _clock_time(timestamp: str) -> str:
    return parse_timestamp(timestamp).astimezone(TIMEZONE).strftime("%H:%M:%S")


def export_rows(store: TreeStore, card_id: str, date: str) -> list[dict]:
    """Rows for an external spreadsheet writer, in daily log order.

    Distance is only known for records of the session still running, since
    the host location of older sessions is gone.
    """
    card = load_card(store, card_id)
    session = card.active_session

    rows = []
    for record in daily_log(store, card_id, date):
        distance = None
        if session is not None and record.sessionId == session.sessionId:
            distance = distance_meters(record.checkin.location, session.location)
        rows.append(
            {
                "Name": record.userName,
                "ID": record.userId,
                "Check-in Time": _clock_time(record.checkin.timestamp),
                "Check-out Time": _clock_time(record.checkout.timestamp)
                if record.checkout
                else "N/A",
                "Duration": format_duration(
                    record.checkin.timestamp,
                    record.checkout.timestamp if record.checkout else None,
                ),
                "Distance (m)": f"{distance:.0f}" if distance is not None else "N/A",
                "OS": record.checkin.deviceInfo.os,
                "Browser": record.checkin.deviceInfo.browser,
            }
        )
    return rows


def share_link(store: TreeStore, card_id: str) -> str:
    load_card(store, card_id)
    base_url = store.read("url")
    if not base_url:
        raise ShareUrlMissing()
    return f"{base_url}?cardid={card_id}"
