from typing import Optional

from pydantic import BaseModel

from markit.schemas.geo import GeoLocation


class DeviceInfo(BaseModel):
    os: str
    browser: str
    userAgent: str


class Stamp(BaseModel):
    timestamp: str
    location: GeoLocation
    deviceInfo: DeviceInfo


class AttendanceRecord(BaseModel):
    """A check-in (and optional check-out) answering one session.

    The copy kept under the user has no userId/userName but points at its
    daily log copy through logDate/logKey. The daily log copy carries the
    full identity for card-wide queries.
    """

    sessionId: str
    checkin: Stamp
    checkout: Optional[Stamp] = None
    userId: Optional[str] = None
    userName: Optional[str] = None
    logDate: Optional[str] = None
    logKey: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def is_open(self) -> bool:
        return self.checkout is None

    def user_copy(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"userId", "userName"})

    def log_copy(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"logDate", "logKey"})


class CheckinResult(BaseModel):
    action: str
    recordKey: str
    record: AttendanceRecord
    distance: Optional[float] = None
    warning: Optional[str] = None


class LogPage(BaseModel):
    items: list[AttendanceRecord]
    page: int
    totalPages: int
    total: int


class AttendanceMatrix(BaseModel):
    users: list[dict]
    dates: list[str]
    presence: dict[str, dict[str, bool]]
