import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import markit.api.auth as auth
import markit.api.cards as cards
from markit.api.dependencies import (
    device_dependency,
    host_agents,
    participant_dependency,
    scheduler,
    store_dependency,
)
from markit.database.initialize import create_tables
from markit.database.store import get_store
from markit.schemas.attendance import CheckinResult
from markit.schemas.geo import GeoLocation
from markit.schemas.session import SessionView
from markit.schemas.user import ParticipantSignIn
from markit.services import checkin_service, ledger_service, roster_service, session_service
from markit.services.errors import MarkitError
from markit.utils.geodesy import distance_meters, is_within

if os.getenv("ENVIRONMENT") == "development":
    load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def _location(lat: Optional[float], long: Optional[float]) -> Optional[GeoLocation]:
    # No coordinates means the device could not resolve its position.
    if lat is None or long is None:
        return None
    return GeoLocation(latitude=lat, longitude=long)


# ----------------------------------------App lifecycle--------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    if not scheduler.running:
        scheduler.start()
    resumed = host_agents.resume(get_store())
    if resumed:
        logging.info(f"Re-attached host agents to {len(resumed)} running sessions")
    yield
    host_agents.shutdown()
    if scheduler.running:
        scheduler.shutdown(wait=False)


# ----------------------------------------FastAPI App Init--------------------------------------------
app = FastAPI(title="Markit", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router)
app.include_router(cards.router)


@app.exception_handler(MarkitError)
async def markit_error_handler(request: Request, exc: MarkitError):
    if exc.status_code >= 500:
        logging.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ----------------------------------------Routes--------------------------------------------
@app.get("/")
def index():
    return "Hello! Access our documentation by adding '/docs' to the url above"


# ---------------------------- Endpoint to sign a participant in to a card
@app.post("/attend/{card_id}/sign_in")
def sign_in(card_id: str, body: ParticipantSignIn, store: store_dependency):
    """Binds this device to the participant's roster entry.
    The returned session token goes in the X-Session-Token header of later calls.
    """
    user_key, token = roster_service.sign_in(store, card_id, body.user_id, body.name)
    return {"user_key": user_key, "session_token": token}


@app.get("/attend/{card_id}/me")
def me(card_id: str, participant: participant_dependency):
    user_key, user = participant
    return {"user_key": user_key, "id": user.id, "name": user.name}


@app.post("/attend/{card_id}/sign_out")
def sign_out(card_id: str, store: store_dependency, participant: participant_dependency):
    user_key, _ = participant
    roster_service.sign_out(store, card_id, user_key)
    return {"message": "Signed out"}


# ---------------------------- Endpoint to view the session from the participant side
@app.get("/attend/{card_id}/session", response_model=SessionView)
def participant_session(
    card_id: str,
    store: store_dependency,
    participant: participant_dependency,
    lat: Optional[float] = None,
    long: Optional[float] = None,
):
    """Current session state and whether the participant already checked in.
    With coordinates, also how far they are from the host and whether that is
    close enough."""
    user_key, _ = participant
    card = session_service.load_card(store, card_id)
    session = card.active_session
    view = SessionView(
        active=session is not None,
        session=session,
        codeExpiresAt=card.codeExpiresAt if session else None,
        countdown=session_service.code_countdown(card),
    )
    if session is None:
        return view

    view.checkedIn = ledger_service.is_checked_in(store, card_id, user_key, session.sessionId)
    location = _location(lat, long)
    if location is not None:
        view.distance = distance_meters(location, session.location)
        view.inRange = is_within(location, session.location, session.maxDistance)
    return view


# ---------------------------- Endpoints to validate attendance and store it
@app.post("/attend/{card_id}/mark", response_model=CheckinResult)
def mark_attendance(
    card_id: str,
    store: store_dependency,
    participant: participant_dependency,
    device: device_dependency,
    lat: Optional[float] = None,
    long: Optional[float] = None,
):
    """Checks the participant in, or out when checkout is enabled and they are
    already checked in to the running session."""
    user_key, _ = participant
    return checkin_service.mark_attendance(store, card_id, user_key, _location(lat, long), device)


@app.post("/attend/{card_id}/check_in", response_model=CheckinResult)
def check_in(
    card_id: str,
    store: store_dependency,
    participant: participant_dependency,
    device: device_dependency,
    lat: Optional[float] = None,
    long: Optional[float] = None,
):
    user_key, _ = participant
    return checkin_service.check_in(store, card_id, user_key, _location(lat, long), device)


@app.post("/attend/{card_id}/check_out", response_model=CheckinResult)
def check_out(
    card_id: str,
    store: store_dependency,
    participant: participant_dependency,
    device: device_dependency,
    lat: Optional[float] = None,
    long: Optional[float] = None,
):
    user_key, _ = participant
    return checkin_service.check_out(store, card_id, user_key, _location(lat, long), device)


# ---------------------------- Endpoint to list the participant's own records
@app.get("/attend/{card_id}/history")
def history(card_id: str, store: store_dependency, participant: participant_dependency):
    user_key, _ = participant
    records = ledger_service.user_history(store, card_id, user_key)
    if not records:
        raise HTTPException(status_code=404, detail="No attendance history yet.")
    return records


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
