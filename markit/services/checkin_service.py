"""Distance-gated check-in and check-out.

A check-in writes two copies of the same record: one under the participant
(the copy they see) and one in the card's log for the day (the copy admins
query). The user copy is written first and decides success; a failed log
write is reported as a warning and never rolls the user copy back.

Client reported coordinates are trusted as-is.
"""
import logging
from typing import Optional

from markit.database.store import TreeStore
from markit.schemas.attendance import AttendanceRecord, CheckinResult, DeviceInfo, Stamp
from markit.schemas.card import Card
from markit.schemas.geo import GeoLocation
from markit.schemas.user import RosterUser
from markit.services.errors import (
    AlreadyCheckedIn,
    CheckoutDisabled,
    LocationUnavailable,
    NoActiveSession,
    NotCheckedIn,
    OutOfRange,
    PartialWriteFailure,
    StoreWriteFailed,
    UserNotFound,
)
from markit.services.ledger_service import is_checked_in
from markit.services.session_service import load_card
from markit.utils.clock import iso_timestamp, log_date, now_ms
from markit.utils.geodesy import distance_meters, is_within


def _roster_user(card: Card, user_key: str) -> RosterUser:
    user = card.users.get(user_key)
    if user is None:
        raise UserNotFound()
    return user


def check_in(
    store: TreeStore,
    card_id: str,
    user_key: str,
    location: Optional[GeoLocation],
    device_info: DeviceInfo,
    now: Optional[int] = None,
) -> CheckinResult:
    if location is None:
        raise LocationUnavailable()

    card = load_card(store, card_id)
    user = _roster_user(card, user_key)
    session = card.active_session
    if session is None:
        raise NoActiveSession()

    distance = distance_meters(location, session.location)
    if not is_within(location, session.location, session.maxDistance):
        raise OutOfRange(distance, session.maxDistance)

    _, existing = user.record_for(session.sessionId)
    if existing is not None:
        raise AlreadyCheckedIn()

    now = now_ms() if now is None else now
    record_key = store.generate_key()
    record = AttendanceRecord(
        sessionId=session.sessionId,
        checkin=Stamp(
            timestamp=iso_timestamp(now),
            location=location,
            deviceInfo=device_info,
        ),
        userId=user.id,
        userName=user.name,
        logDate=log_date(now),
        logKey=store.generate_key(),
    )

    # Raises StoreWriteFailed; nothing has been written yet in that case.
    store.write(
        f"cards/{card_id}/users/{user_key}/attendance/{record_key}",
        record.user_copy(),
    )

    warning = None
    try:
        store.write(
            f"cards/{card_id}/logs/{record.logDate}/{record.logKey}",
            record.log_copy(),
        )
    except StoreWriteFailed as e:
        partial = PartialWriteFailure()
        logging.warning(
            f"{partial.message} (card {card_id}, user {user.id}): {e.__cause__}"
        )
        warning = partial.message

    logging.info(
        f"User {user.id} checked in to session {session.sessionId} ({distance:.0f}m)"
    )
    return CheckinResult(
        action="checkin",
        recordKey=record_key,
        record=record,
        distance=distance,
        warning=warning,
    )


def check_out(
    store: TreeStore,
    card_id: str,
    user_key: str,
    location: Optional[GeoLocation],
    device_info: DeviceInfo,
    now: Optional[int] = None,
) -> CheckinResult:
    """Stamp the departure on the open record for the active session.

    Distance is not checked again, only the departure time matters.
    """
    if location is None:
        raise LocationUnavailable()

    card = load_card(store, card_id)
    if not card.settings.checkoutEnabled:
        raise CheckoutDisabled()
    user = _roster_user(card, user_key)
    session = card.active_session
    if session is None:
        raise NoActiveSession()

    record_key, record = user.record_for(session.sessionId)
    if record is None or not record.is_open:
        raise NotCheckedIn()

    now = now_ms() if now is None else now
    stamp = Stamp(timestamp=iso_timestamp(now), location=location, deviceInfo=device_info)

    updates = {
        f"cards/{card_id}/users/{user_key}/attendance/{record_key}/checkout": stamp.model_dump()
    }
    if record.logDate and record.logKey:
        log_path = f"cards/{card_id}/logs/{record.logDate}/{record.logKey}"
        if store.read(log_path) is not None:
            updates[f"{log_path}/checkout"] = stamp.model_dump()
        else:
            logging.warning(f"Log copy {log_path} missing, checkout saved on user only")
    store.multi_path_update(updates)

    record.checkout = stamp
    record.userId, record.userName = user.id, user.name
    logging.info(f"User {user.id} checked out of session {session.sessionId}")
    return CheckinResult(
        action="checkout",
        recordKey=record_key,
        record=record,
        distance=distance_meters(location, session.location),
    )


def mark_attendance(
    store: TreeStore,
    card_id: str,
    user_key: str,
    location: Optional[GeoLocation],
    device_info: DeviceInfo,
    now: Optional[int] = None,
) -> CheckinResult:
    """Check out when checkout is enabled and the user is checked in to the
    active session, check in otherwise."""
    card = load_card(store, card_id)
    session = card.active_session
    if (
        card.settings.checkoutEnabled
        and session is not None
        and is_checked_in(store, card_id, user_key, session.sessionId)
    ):
        return check_out(store, card_id, user_key, location, device_info, now)
    return check_in(store, card_id, user_key, location, device_info, now)
