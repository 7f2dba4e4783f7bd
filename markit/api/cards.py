import logging
from datetime import date as Date

from fastapi import APIRouter, HTTPException
from starlette import status

from markit.api.dependencies import admin_dependency, agents_dependency, store_dependency
from markit.schemas.attendance import AttendanceMatrix, LogPage
from markit.schemas.card import CardCreate
from markit.schemas.geo import GeoLocation
from markit.schemas.session import SessionStart, SessionView
from markit.schemas.user import ParticipantSignIn, UserUpdate
from markit.services import ledger_service, roster_service, session_service
from markit.services.errors import NotSessionHost

router = APIRouter(prefix="/cards", tags=["cards"])


def _session_view(card) -> SessionView:
    session = card.active_session
    return SessionView(
        active=session is not None,
        session=session,
        code=card.code if session else None,
        codeExpiresAt=card.codeExpiresAt if session else None,
        countdown=session_service.code_countdown(card),
    )


# ---------------------------- Cards
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_card(card: CardCreate, store: store_dependency, admin: admin_dependency):
    """Creates an attendance card owned by the requesting admin."""
    card_id = roster_service.create_card(store, admin["admin_id"], card.name.strip())
    return {"cardId": card_id, "name": card.name.strip()}


@router.get("/")
def list_cards(store: store_dependency, admin: admin_dependency):
    """Gets the cards created by the admin requesting from this endpoint."""
    return roster_service.list_cards(store, admin["admin_id"])


@router.get("/{card_id}")
def get_card(card_id: str, store: store_dependency, admin: admin_dependency):
    card = roster_service.require_owner(store, admin["admin_id"], card_id)
    return {
        "id": card.id,
        "cardName": card.cardName,
        "createdAt": card.createdAt,
        "settings": card.settings,
        "users": len(card.users),
        "session": _session_view(card),
    }


@router.delete("/{card_id}")
def delete_card(
    card_id: str, store: store_dependency, admin: admin_dependency, agents: agents_dependency
):
    """Deletes the card together with its roster, logs and running session."""
    roster_service.delete_card(store, admin["admin_id"], card_id)
    agents.stop(card_id)
    return {"message": f"Successfully deleted card {card_id}"}


@router.put("/{card_id}/settings/{setting}")
def toggle_setting(card_id: str, setting: str, store: store_dependency, admin: admin_dependency):
    roster_service.require_owner(store, admin["admin_id"], card_id)
    value = roster_service.toggle_setting(store, card_id, setting)
    return {setting: value}


# ---------------------------- Session
@router.post("/{card_id}/session/start", response_model=SessionView)
def start_session(
    card_id: str,
    body: SessionStart,
    store: store_dependency,
    admin: admin_dependency,
    agents: agents_dependency,
):
    """Starts a session around the admin's current location.

    The code is rotated in the background for as long as the session runs.
    """
    roster_service.require_owner(store, admin["admin_id"], card_id)
    session_service.start_session(
        store,
        card_id,
        host_id=admin["admin_id"],
        host_name=admin["email"] or "Admin",
        host_location=body.location,
        max_distance=body.max_distance,
    )
    agents.start(store, card_id, admin["admin_id"])
    return _session_view(session_service.load_card(store, card_id))


@router.post("/{card_id}/session/stop")
def stop_session(
    card_id: str, store: store_dependency, admin: admin_dependency, agents: agents_dependency
):
    roster_service.require_owner(store, admin["admin_id"], card_id)
    stopped = session_service.stop_session(store, card_id)
    agents.stop(card_id)
    if not stopped:
        return {"message": "No active session"}
    return {"message": "Session stopped"}


@router.put("/{card_id}/session/location")
def refresh_location(
    card_id: str, location: GeoLocation, store: store_dependency, admin: admin_dependency
):
    """Periodic host location update. Only the session host may move the session."""
    session = session_service.get_session(store, card_id)
    if session is not None and session.active and session.hostId != admin["admin_id"]:
        raise NotSessionHost()
    session = session_service.refresh_host_location(store, card_id, location)
    return {"location": session.location}


@router.get("/{card_id}/session", response_model=SessionView)
def get_session(card_id: str, store: store_dependency, admin: admin_dependency):
    """Session state as the host sees it. An expired code is replaced before it
    is shown, whether or not a host agent is running for the card."""
    roster_service.require_owner(store, admin["admin_id"], card_id)
    if session_service.rotate_code_if_expired(store, card_id, admin["admin_id"]):
        logging.info(f"Access code for card {card_id} regenerated on host view")
    return _session_view(session_service.load_card(store, card_id))


# ---------------------------- Roster
@router.get("/{card_id}/users")
def list_users(card_id: str, store: store_dependency, admin: admin_dependency):
    card = roster_service.require_owner(store, admin["admin_id"], card_id)
    users = [
        {
            "key": key,
            "id": user.id,
            "name": user.name,
            "timestamp": user.timestamp,
            "signedIn": bool(user.sessionToken),
            "records": len(user.attendance),
        }
        for key, user in card.users.items()
    ]
    return sorted(users, key=lambda u: u["name"].lower())


@router.post("/{card_id}/users", status_code=status.HTTP_201_CREATED)
def create_user(
    card_id: str, user: ParticipantSignIn, store: store_dependency, admin: admin_dependency
):
    roster_service.require_owner(store, admin["admin_id"], card_id)
    user_key = roster_service.create_user(store, card_id, user.user_id, user.name)
    return {"key": user_key}


@router.patch("/{card_id}/users/{user_key}")
def update_user(
    card_id: str,
    user_key: str,
    changes: UserUpdate,
    store: store_dependency,
    admin: admin_dependency,
):
    roster_service.require_owner(store, admin["admin_id"], card_id)
    if changes.name is None and changes.user_id is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    user = roster_service.update_user(
        store, card_id, user_key, name=changes.name, user_id=changes.user_id
    )
    return {"key": user_key, "id": user.id, "name": user.name}


@router.delete("/{card_id}/users/{user_key}/session_token")
def clear_session_token(
    card_id: str, user_key: str, store: store_dependency, admin: admin_dependency
):
    """Forces the participant to sign in again on their next visit."""
    roster_service.require_owner(store, admin["admin_id"], card_id)
    roster_service.clear_session_token(store, card_id, user_key)
    logging.info(f"Session token cleared for user {user_key} on card {card_id}")
    return {"message": "User will be asked to sign in again"}


# ---------------------------- Ledger
@router.get("/{card_id}/logs/{date}", response_model=LogPage)
def get_daily_log(
    card_id: str, date: Date, store: store_dependency, admin: admin_dependency, page: int = 1
):
    """Gets the attendance log of a day, latest check-in first, a page at a time."""
    roster_service.require_owner(store, admin["admin_id"], card_id)
    records = ledger_service.daily_log(store, card_id, date.isoformat())
    return ledger_service.paginate(records, page)


@router.get("/{card_id}/matrix", response_model=AttendanceMatrix)
def get_matrix(card_id: str, store: store_dependency, admin: admin_dependency):
    roster_service.require_owner(store, admin["admin_id"], card_id)
    matrix = ledger_service.attendance_matrix(store, card_id)
    if not matrix.users:
        raise HTTPException(status_code=404, detail="No users found for this card.")
    return matrix


@router.get("/{card_id}/export/{date}")
def export_day(card_id: str, date: Date, store: store_dependency, admin: admin_dependency):
    card = roster_service.require_owner(store, admin["admin_id"], card_id)
    rows = ledger_service.export_rows(store, card_id, date.isoformat())
    if not rows:
        raise HTTPException(status_code=404, detail="No data to export for the selected date.")
    return {"cardName": card.cardName, "date": date.isoformat(), "rows": rows}


@router.get("/{card_id}/share_link")
def get_share_link(card_id: str, store: store_dependency, admin: admin_dependency):
    card = roster_service.require_owner(store, admin["admin_id"], card_id)
    link = ledger_service.share_link(store, card_id)
    return {
        "link": link,
        "message": f"This is the attendance url for {card.cardName} {link}",
    }
