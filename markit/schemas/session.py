from typing import Optional

from pydantic import BaseModel, Field

from markit.schemas.geo import GeoLocation


class CurrentSession(BaseModel):
    active: bool
    cardId: str
    sessionId: str
    createdAt: int
    hostId: str
    hostName: str
    location: GeoLocation
    maxDistance: float

    class Config:
        from_attributes = True


class SessionStart(BaseModel):
    # Missing coordinates mean the host device could not resolve a position.
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    max_distance: float = Field(default=100, gt=0)

    @property
    def location(self) -> Optional[GeoLocation]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoLocation(latitude=self.latitude, longitude=self.longitude)


class SessionView(BaseModel):
    active: bool
    session: Optional[CurrentSession] = None
    code: Optional[str] = None
    codeExpiresAt: Optional[int] = None
    countdown: int = 0
    distance: Optional[float] = None
    inRange: Optional[bool] = None
    checkedIn: Optional[bool] = None
