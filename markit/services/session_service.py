"""Lifecycle of a card's current session and its rotating access code.

Every write that touches more than one session key goes through a single
store update so readers never see an active session without a code or a
code left behind by a stopped session. Writes that depend on the session
still running (stop, location refresh, code rotation) re-check it inside
``conditional_update``, so a stop committed in between is never undone.

Two host observers that see the same expiry both try to rotate; the second
one finds a fresh code and writes nothing.
"""
import logging
import random
import uuid
from typing import Optional

from markit.database.store import TreeStore
from markit.schemas.card import Card
from markit.schemas.geo import GeoLocation
from markit.schemas.session import CurrentSession
from markit.services.errors import CardNotFound, LocationUnavailable, NoActiveSession
from markit.utils.clock import now_ms

CODE_TTL_MS = 2 * 60 * 1000


def generate_access_code() -> str:
    # 1000..9999 never needs zero padding
    return str(random.randint(1000, 9999))


def new_session_id() -> str:
    return uuid.uuid4().hex


def load_card(store: TreeStore, card_id: str) -> Card:
    raw = store.read(f"cards/{card_id}")
    if not raw:
        raise CardNotFound()
    return Card.from_store(card_id, raw)


def get_session(store: TreeStore, card_id: str) -> Optional[CurrentSession]:
    raw = store.read(f"cards/{card_id}/current")
    if not raw:
        return None
    return CurrentSession.model_validate(raw)


def active_sessions(store: TreeStore) -> list[CurrentSession]:
    """Sessions still running on any card, e.g. to re-attach hosts after a restart."""
    sessions = []
    for raw in (store.read("cards") or {}).values():
        current = raw.get("current") if isinstance(raw, dict) else None
        if current and current.get("active"):
            sessions.append(CurrentSession.model_validate(current))
    return sessions


def start_session(
    store: TreeStore,
    card_id: str,
    host_id: str,
    host_name: str,
    host_location: Optional[GeoLocation],
    max_distance: float,
    now: Optional[int] = None,
) -> tuple[CurrentSession, str]:
    """Open a new session, superseding any current one."""
    if host_location is None:
        raise LocationUnavailable()
    load_card(store, card_id)

    now = now_ms() if now is None else now
    session = CurrentSession(
        active=True,
        cardId=card_id,
        sessionId=new_session_id(),
        createdAt=now,
        hostId=host_id,
        hostName=host_name,
        location=host_location,
        maxDistance=float(max_distance),
    )
    code = generate_access_code()

    store.multi_path_update(
        {
            f"cards/{card_id}/current": session.model_dump(),
            f"cards/{card_id}/code": code,
            f"cards/{card_id}/codeExpiresAt": now + CODE_TTL_MS,
        }
    )
    logging.info(f"Session {session.sessionId} started on card {card_id} by {host_id}")
    return session, code


def stop_session(store: TreeStore, card_id: str) -> bool:
    """Clear the session and its code. Returns False when nothing was active."""

    def clear(card):
        card = card if isinstance(card, dict) else {}
        if card.get("current") is None and card.get("code") is None:
            return None
        return {
            f"cards/{card_id}/current": None,
            f"cards/{card_id}/code": None,
            f"cards/{card_id}/codeExpiresAt": None,
        }

    if store.conditional_update(f"cards/{card_id}", clear) is None:
        return False
    logging.info(f"Session stopped on card {card_id}")
    return True


def refresh_host_location(
    store: TreeStore, card_id: str, location: GeoLocation
) -> CurrentSession:
    session = None

    def move(current):
        nonlocal session
        if not current or not current.get("active"):
            return None
        session = CurrentSession.model_validate(current)
        return {f"cards/{card_id}/current/location": location.model_dump()}

    if store.conditional_update(f"cards/{card_id}/current", move) is None:
        raise NoActiveSession()
    session.location = location
    return session


def _due_for_rotation(card_id: str, raw, observer_id: str, now: int) -> bool:
    if not raw:
        return False
    card = Card.from_store(card_id, raw)
    session = card.active_session
    if session is None or session.hostId != observer_id:
        return False
    return card.code is None or card.codeExpiresAt is None or now >= card.codeExpiresAt


def rotate_code_if_expired(
    store: TreeStore, card_id: str, observer_id: str, now: Optional[int] = None
) -> Optional[str]:
    """Regenerate the access code when it has expired.

    Only the current host writes; every other observer just counts down.
    Returns the new code, or None when nothing was written.
    """
    now = now_ms() if now is None else now

    # most ticks find a fresh code and stop here
    if not _due_for_rotation(card_id, store.read(f"cards/{card_id}"), observer_id, now):
        return None

    def rotate(raw):
        if not _due_for_rotation(card_id, raw, observer_id, now):
            return None
        return {
            f"cards/{card_id}/code": generate_access_code(),
            f"cards/{card_id}/codeExpiresAt": now + CODE_TTL_MS,
        }

    updates = store.conditional_update(f"cards/{card_id}", rotate)
    if updates is None:
        return None
    return updates[f"cards/{card_id}/code"]


def code_countdown(card: Card, now: Optional[int] = None) -> int:
    if card.active_session is None or card.codeExpiresAt is None:
        return 0
    now = now_ms() if now is None else now
    return max(0, round((card.codeExpiresAt - now) / 1000))
