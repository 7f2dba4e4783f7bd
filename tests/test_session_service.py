import re

import pytest

from markit.schemas.geo import GeoLocation
from markit.services import roster_service, session_service
from markit.services.errors import CardNotFound, LocationUnavailable, NoActiveSession
from tests.conftest import ADMIN_ID, HOST, NOW

CODE_PATTERN = re.compile(r"^[1-9][0-9]{3}$")


def test_access_codes_are_four_digits():
    for _ in range(2000):
        assert CODE_PATTERN.match(session_service.generate_access_code())


def test_start_session_writes_session_and_code(store, card_id):
    session, code = session_service.start_session(
        store, card_id, ADMIN_ID, "admin@example.com", HOST, 100, now=NOW
    )

    card = store.read(f"cards/{card_id}")
    assert card["current"] == {
        "active": True,
        "cardId": card_id,
        "sessionId": session.sessionId,
        "createdAt": NOW,
        "hostId": ADMIN_ID,
        "hostName": "admin@example.com",
        "location": {"latitude": 51.5, "longitude": -0.12},
        "maxDistance": 100.0,
    }
    assert card["code"] == code
    assert CODE_PATTERN.match(code)
    assert card["codeExpiresAt"] == NOW + 120000
    assert re.fullmatch(r"[0-9a-f]{32}", session.sessionId)


def test_start_without_location_writes_nothing(store, card_id):
    with pytest.raises(LocationUnavailable):
        session_service.start_session(store, card_id, ADMIN_ID, "admin", None, 100, now=NOW)

    assert store.read(f"cards/{card_id}/current") is None
    assert store.read(f"cards/{card_id}/code") is None


def test_start_on_unknown_card(store):
    with pytest.raises(CardNotFound):
        session_service.start_session(store, "nope", ADMIN_ID, "admin", HOST, 100, now=NOW)


def test_new_session_supersedes_the_old_one(store, card_id):
    first, _ = session_service.start_session(store, card_id, ADMIN_ID, "admin", HOST, 100, now=NOW)
    second, _ = session_service.start_session(
        store, card_id, ADMIN_ID, "admin", HOST, 50, now=NOW + 1
    )

    current = session_service.get_session(store, card_id)
    assert current.sessionId == second.sessionId != first.sessionId
    assert current.maxDistance == 50


def test_stop_session_clears_everything(store, active_card):
    card_id, _, _ = active_card

    assert session_service.stop_session(store, card_id) is True

    card = store.read(f"cards/{card_id}")
    assert "current" not in card
    assert "code" not in card
    assert "codeExpiresAt" not in card
    assert card["cardName"] == "Physics 101"


def test_stopping_an_inactive_session_is_a_noop(store, card_id):
    before = store.read(f"cards/{card_id}")
    seen = []
    with store.subscribe(f"cards/{card_id}", seen.append):
        assert session_service.stop_session(store, card_id) is False
        assert session_service.stop_session(store, card_id) is False

    assert store.read(f"cards/{card_id}") == before
    assert len(seen) == 1  # only the initial snapshot, no writes happened


def test_refresh_host_location(store, active_card):
    card_id, _, _ = active_card
    moved = GeoLocation(latitude=51.501, longitude=-0.121)

    session_service.refresh_host_location(store, card_id, moved)

    assert session_service.get_session(store, card_id).location == moved


def test_refresh_host_location_requires_active_session(store, card_id):
    with pytest.raises(NoActiveSession):
        session_service.refresh_host_location(store, card_id, HOST)
    assert store.read(f"cards/{card_id}/current") is None


def test_code_is_kept_until_it_expires(store, active_card):
    card_id, _, _ = active_card
    code = store.read(f"cards/{card_id}/code")

    assert session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=NOW + 119999) is None
    assert store.read(f"cards/{card_id}/code") == code


def test_host_rotates_expired_code(store, active_card):
    card_id, _, _ = active_card
    later = NOW + 120000

    new_code = session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=later)

    assert CODE_PATTERN.match(new_code)
    assert store.read(f"cards/{card_id}/code") == new_code
    assert store.read(f"cards/{card_id}/codeExpiresAt") == later + 120000


def test_non_host_observers_never_rotate(store, active_card):
    card_id, _, _ = active_card
    before = store.read(f"cards/{card_id}")

    assert session_service.rotate_code_if_expired(store, card_id, "someone-else", now=NOW + 500000) is None
    assert store.read(f"cards/{card_id}") == before


def test_no_rotation_without_a_session(store, card_id):
    assert session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=NOW) is None
    assert session_service.rotate_code_if_expired(store, "missing", ADMIN_ID, now=NOW) is None
    assert store.read(f"cards/{card_id}/code") is None


def test_countdown(store, active_card):
    card_id, _, _ = active_card
    card = session_service.load_card(store, card_id)

    assert session_service.code_countdown(card, now=NOW) == 120
    assert session_service.code_countdown(card, now=NOW + 30000) == 90
    assert session_service.code_countdown(card, now=NOW + 200000) == 0

    session_service.stop_session(store, card_id)
    card = session_service.load_card(store, card_id)
    assert session_service.code_countdown(card, now=NOW) == 0


def test_stop_between_rotation_check_and_write_wins(store, active_card, monkeypatch):
    card_id, _, _ = active_card
    read = store.read
    stopped = []

    def read_then_stop(path):
        value = read(path)
        if path == f"cards/{card_id}" and not stopped:
            # the host stops the session right after the rotation looked at the card
            stopped.append(session_service.stop_session(store, card_id))
        return value

    monkeypatch.setattr(store, "read", read_then_stop)
    assert session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=NOW + 200000) is None
    monkeypatch.undo()

    assert stopped == [True]
    card = store.read(f"cards/{card_id}")
    assert "current" not in card
    assert "code" not in card
    assert "codeExpiresAt" not in card
    assert session_service.stop_session(store, card_id) is False


def test_location_refresh_after_stop_leaves_no_session_behind(store, active_card):
    card_id, _, _ = active_card
    session_service.stop_session(store, card_id)

    with pytest.raises(NoActiveSession):
        session_service.refresh_host_location(store, card_id, HOST)
    assert store.read(f"cards/{card_id}/current") is None


def test_second_rotation_on_same_expiry_writes_nothing(store, active_card):
    card_id, _, _ = active_card
    later = NOW + 120000

    first = session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=later)

    assert first is not None
    assert session_service.rotate_code_if_expired(store, card_id, ADMIN_ID, now=later) is None
    assert store.read(f"cards/{card_id}/code") == first


def test_active_sessions(store, active_card):
    card_id, _, session = active_card
    roster_service.create_card(store, ADMIN_ID, "Chemistry", now=NOW)

    sessions = session_service.active_sessions(store)

    assert [s.sessionId for s in sessions] == [session.sessionId]
    assert sessions[0].cardId == card_id
    session_service.stop_session(store, card_id)
    assert session_service.active_sessions(store) == []
