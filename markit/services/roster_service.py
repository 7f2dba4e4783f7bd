"""Cards, their rosters and participant sign-in.

A participant signs in to a card once per device. The device keeps the
returned session token and uses it instead of re-entering name and id. The
roster entry holds the token until an admin clears it (which forces a fresh
sign-in) or, when the card allows it, the participant signs out.
"""
import logging
import secrets
from typing import Optional

from markit.database.store import TreeStore
from markit.schemas.card import SETTING_NAMES, Card, CardSummary
from markit.schemas.user import RosterUser
from markit.services.errors import (
    AlreadySignedIn,
    CardNotFound,
    DuplicateUser,
    InvalidSessionToken,
    InvalidSetting,
    NotCardOwner,
    SignOutDisabled,
    UserNotFound,
)
from markit.services.session_service import load_card
from markit.utils.clock import iso_timestamp, now_ms


# ---------------------------------------- Cards
def create_card(store: TreeStore, admin_id: str, name: str, now: Optional[int] = None) -> str:
    now = now_ms() if now is None else now
    card_id = store.generate_key()
    store.multi_path_update(
        {
            f"cards/{card_id}": {
                "cardName": name,
                "hostId": admin_id,
                "createdAt": iso_timestamp(now),
            },
            f"admins/{admin_id}/cards/{card_id}": True,
        }
    )
    logging.info(f"Card {card_id} created by {admin_id}")
    return card_id


def require_owner(store: TreeStore, admin_id: str, card_id: str) -> Card:
    card = load_card(store, card_id)
    if card.hostId != admin_id:
        raise NotCardOwner()
    return card


def delete_card(store: TreeStore, admin_id: str, card_id: str) -> None:
    """Remove the card with its roster, logs and session."""
    require_owner(store, admin_id, card_id)
    store.multi_path_update(
        {
            f"cards/{card_id}": None,
            f"admins/{admin_id}/cards/{card_id}": None,
        }
    )
    logging.info(f"Card {card_id} deleted by {admin_id}")


def list_cards(store: TreeStore, admin_id: str) -> list[CardSummary]:
    summaries = []
    for card_id in store.read(f"admins/{admin_id}/cards") or {}:
        raw = store.read(f"cards/{card_id}")
        if not raw:
            continue
        card = Card.from_store(card_id, raw)
        summaries.append(
            CardSummary(
                id=card.id,
                cardName=card.cardName,
                createdAt=card.createdAt,
                active=card.active_session is not None,
                users=len(card.users),
            )
        )
    return sorted(summaries, key=lambda c: c.createdAt or "", reverse=True)


def toggle_setting(store: TreeStore, card_id: str, setting: str) -> bool:
    if setting not in SETTING_NAMES:
        raise InvalidSetting(f"Unknown card setting: {setting}")
    load_card(store, card_id)
    path = f"cards/{card_id}/settings/{setting}"
    value = not bool(store.read(path))
    store.write(path, value)
    return value


# ---------------------------------------- Roster
def _find_by_id(card: Card, user_id: str) -> tuple[Optional[str], Optional[RosterUser]]:
    for key, user in card.users.items():
        if user.id == user_id:
            return key, user
    return None, None


def get_user(store: TreeStore, card_id: str, user_key: str) -> RosterUser:
    raw = store.read(f"cards/{card_id}/users/{user_key}")
    if not raw:
        raise UserNotFound()
    return RosterUser.model_validate(raw)


def create_user(
    store: TreeStore,
    card_id: str,
    user_id: str,
    name: str,
    now: Optional[int] = None,
    session_token: Optional[str] = None,
) -> str:
    card = load_card(store, card_id)
    if _find_by_id(card, user_id)[1] is not None:
        raise DuplicateUser()

    now = now_ms() if now is None else now
    user = {"id": user_id, "name": name, "timestamp": iso_timestamp(now)}
    if session_token:
        user["sessionToken"] = session_token
    return store.append(f"cards/{card_id}/users", user)


def update_user(
    store: TreeStore,
    card_id: str,
    user_key: str,
    name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> RosterUser:
    card = load_card(store, card_id)
    if user_key not in card.users:
        raise UserNotFound()

    updates = {}
    if name is not None and name.strip():
        updates[f"cards/{card_id}/users/{user_key}/name"] = name.strip()
    if user_id is not None and user_id.strip():
        other_key, _ = _find_by_id(card, user_id.strip())
        if other_key is not None and other_key != user_key:
            raise DuplicateUser()
        updates[f"cards/{card_id}/users/{user_key}/id"] = user_id.strip()
    if updates:
        store.multi_path_update(updates)
    return get_user(store, card_id, user_key)


def clear_session_token(store: TreeStore, card_id: str, user_key: str) -> None:
    """Force the participant to sign in again on their next visit.

    The field is deleted, not nulled: its presence is what allows automatic
    sign-in.
    """
    get_user(store, card_id, user_key)
    store.delete(f"cards/{card_id}/users/{user_key}/sessionToken")


# ---------------------------------------- Participant sign-in
def sign_in(store: TreeStore, card_id: str, user_id: str, name: str) -> tuple[str, str]:
    """Bind this device to a roster entry. Returns (user_key, session_token)."""
    card = load_card(store, card_id)
    token = secrets.token_urlsafe(24)

    user_key, user = _find_by_id(card, user_id)
    if user is None:
        user_key = create_user(store, card_id, user_id, name, session_token=token)
        return user_key, token

    if user.sessionToken:
        raise AlreadySignedIn()
    store.write(f"cards/{card_id}/users/{user_key}/sessionToken", token)
    return user_key, token


def resume(store: TreeStore, card_id: str, token: Optional[str]) -> tuple[str, RosterUser]:
    if not token:
        raise InvalidSessionToken()
    try:
        card = load_card(store, card_id)
    except CardNotFound:
        raise InvalidSessionToken() from None
    for key, user in card.users.items():
        if user.sessionToken and secrets.compare_digest(user.sessionToken, token):
            return key, user
    raise InvalidSessionToken()


def sign_out(store: TreeStore, card_id: str, user_key: str) -> None:
    card = load_card(store, card_id)
    if not card.settings.signOutEnabled:
        raise SignOutDisabled()
    store.delete(f"cards/{card_id}/users/{user_key}/sessionToken")
