import pytest

from markit.services import checkin_service, roster_service, session_service
from markit.services.errors import (
    AlreadyCheckedIn,
    CheckoutDisabled,
    LocationUnavailable,
    NoActiveSession,
    NotCheckedIn,
    OutOfRange,
    StoreWriteFailed,
    UserNotFound,
)
from tests.conftest import ADMIN_ID, FAR, HOST, NEARBY, NOW, TODAY


def _user_records(store, card_id, user_key):
    return store.read(f"cards/{card_id}/users/{user_key}/attendance") or {}


def _log_records(store, card_id, date=TODAY):
    return store.read(f"cards/{card_id}/logs/{date}") or {}


def test_check_in_nearby_writes_both_copies(store, active_card, device):
    card_id, user_key, session = active_card

    result = checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW + 5000)

    assert result.action == "checkin"
    assert result.distance == pytest.approx(7, abs=1)
    assert result.warning is None

    user_copy = _user_records(store, card_id, user_key)[result.recordKey]
    assert user_copy["sessionId"] == session.sessionId
    assert user_copy["checkin"]["timestamp"] == "2024-05-01T08:00:05.000Z"
    assert user_copy["checkin"]["location"] == {"latitude": 51.5, "longitude": -0.1201}
    assert user_copy["checkin"]["deviceInfo"]["os"] == "Android"
    assert "userId" not in user_copy and "checkout" not in user_copy
    assert user_copy["logDate"] == TODAY

    log_copy = _log_records(store, card_id)[user_copy["logKey"]]
    assert log_copy["userId"] == "1001"
    assert log_copy["userName"] == "Ada Lovelace"
    assert log_copy["sessionId"] == session.sessionId
    assert log_copy["checkin"] == user_copy["checkin"]


def test_check_in_out_of_range(store, active_card, device):
    card_id, user_key, _ = active_card

    with pytest.raises(OutOfRange) as excinfo:
        checkin_service.check_in(store, card_id, user_key, FAR, device, now=NOW)

    assert excinfo.value.distance > 100
    assert excinfo.value.max_distance == 100
    assert excinfo.value.detail["maxDistance"] == 100
    assert _user_records(store, card_id, user_key) == {}
    assert store.read(f"cards/{card_id}/logs") is None


def test_check_in_without_session(store, card_id, user_key, device):
    with pytest.raises(NoActiveSession):
        checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    assert _user_records(store, card_id, user_key) == {}


def test_check_in_without_location(store, active_card, device):
    card_id, user_key, _ = active_card
    with pytest.raises(LocationUnavailable):
        checkin_service.check_in(store, card_id, user_key, None, device, now=NOW)


def test_check_in_unknown_user(store, active_card, device):
    card_id, _, _ = active_card
    with pytest.raises(UserNotFound):
        checkin_service.check_in(store, card_id, "nobody", NEARBY, device, now=NOW)


def test_second_check_in_does_not_duplicate(store, active_card, device):
    card_id, user_key, _ = active_card

    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    with pytest.raises(AlreadyCheckedIn):
        checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW + 1000)

    assert len(_user_records(store, card_id, user_key)) == 1
    assert len(_log_records(store, card_id)) == 1


def test_a_new_session_accepts_a_new_check_in(store, active_card, device):
    card_id, user_key, _ = active_card
    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)

    session_service.stop_session(store, card_id)
    session_service.start_session(store, card_id, ADMIN_ID, "admin", HOST, 100, now=NOW + 3600000)
    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW + 3601000)

    records = _user_records(store, card_id, user_key)
    assert len(records) == 2
    assert len({r["sessionId"] for r in records.values()}) == 2


def test_checkout_disabled(store, active_card, device):
    card_id, user_key, _ = active_card
    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)

    with pytest.raises(NotCheckedIn) as excinfo:
        checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW + 1000)
    assert isinstance(excinfo.value, CheckoutDisabled)


def test_checkout_updates_the_existing_record(store, active_card, device):
    card_id, user_key, _ = active_card
    roster_service.toggle_setting(store, card_id, "checkoutEnabled")
    checkin = checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)

    # distance is not checked on the way out
    result = checkin_service.check_out(store, card_id, user_key, FAR, device, now=NOW + 3600000)

    assert result.action == "checkout"
    assert result.recordKey == checkin.recordKey
    records = _user_records(store, card_id, user_key)
    assert list(records) == [checkin.recordKey]
    assert records[checkin.recordKey]["checkout"]["timestamp"] == "2024-05-01T09:00:00.000Z"

    logs = _log_records(store, card_id)
    assert len(logs) == 1
    log_copy = logs[records[checkin.recordKey]["logKey"]]
    assert log_copy["checkout"] == records[checkin.recordKey]["checkout"]
    assert log_copy["userId"] == "1001"


def test_checkout_requires_an_open_record(store, active_card, device):
    card_id, user_key, _ = active_card
    roster_service.toggle_setting(store, card_id, "checkoutEnabled")

    with pytest.raises(NotCheckedIn):
        checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW)

    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW + 1000)
    with pytest.raises(NotCheckedIn):
        checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW + 2000)


def test_checkout_after_session_stopped(store, active_card, device):
    card_id, user_key, _ = active_card
    roster_service.toggle_setting(store, card_id, "checkoutEnabled")
    checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    session_service.stop_session(store, card_id)

    with pytest.raises(NoActiveSession):
        checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW + 1000)


def test_mark_attendance_checks_in_then_out(store, active_card, device):
    card_id, user_key, _ = active_card
    roster_service.toggle_setting(store, card_id, "checkoutEnabled")

    first = checkin_service.mark_attendance(store, card_id, user_key, NEARBY, device, now=NOW)
    second = checkin_service.mark_attendance(store, card_id, user_key, NEARBY, device, now=NOW + 1000)

    assert first.action == "checkin"
    assert second.action == "checkout"
    assert second.recordKey == first.recordKey
    with pytest.raises(AlreadyCheckedIn):
        checkin_service.mark_attendance(store, card_id, user_key, NEARBY, device, now=NOW + 2000)


def test_mark_attendance_without_checkout(store, active_card, device):
    card_id, user_key, _ = active_card

    checkin_service.mark_attendance(store, card_id, user_key, NEARBY, device, now=NOW)
    with pytest.raises(AlreadyCheckedIn):
        checkin_service.mark_attendance(store, card_id, user_key, NEARBY, device, now=NOW + 1000)


def test_failed_log_write_is_a_warning(store, active_card, device, monkeypatch):
    card_id, user_key, _ = active_card
    write = store.write

    def flaky_write(path, value):
        if "/logs/" in path:
            raise StoreWriteFailed()
        return write(path, value)

    monkeypatch.setattr(store, "write", flaky_write)
    result = checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    monkeypatch.undo()

    assert result.warning
    assert result.recordKey in _user_records(store, card_id, user_key)
    assert store.read(f"cards/{card_id}/logs") is None

    # checkout still works on the user copy alone
    roster_service.toggle_setting(store, card_id, "checkoutEnabled")
    checkin_service.check_out(store, card_id, user_key, NEARBY, device, now=NOW + 1000)
    assert _user_records(store, card_id, user_key)[result.recordKey]["checkout"]
    assert store.read(f"cards/{card_id}/logs") is None


def test_failed_user_write_fails_the_check_in(store, active_card, device, monkeypatch):
    card_id, user_key, _ = active_card

    def broken_write(path, value):
        raise StoreWriteFailed()

    monkeypatch.setattr(store, "write", broken_write)
    with pytest.raises(StoreWriteFailed):
        checkin_service.check_in(store, card_id, user_key, NEARBY, device, now=NOW)
    monkeypatch.undo()

    assert _user_records(store, card_id, user_key) == {}
    assert store.read(f"cards/{card_id}/logs") is None
