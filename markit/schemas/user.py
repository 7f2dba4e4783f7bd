from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from markit.schemas.attendance import AttendanceRecord


class RosterUser(BaseModel):
    id: str
    name: str
    timestamp: Optional[str] = None
    sessionToken: Optional[str] = None
    attendance: dict[str, AttendanceRecord] = Field(default_factory=dict)

    class Config:
        from_attributes = True

    def record_for(self, session_id: str) -> tuple[Optional[str], Optional[AttendanceRecord]]:
        for key, record in self.attendance.items():
            if record.sessionId == session_id:
                return key, record
        return None, None


class ParticipantSignIn(BaseModel):
    user_id: str
    name: str

    @field_validator("user_id", "name")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Both ID and Full Name are required.")
        return value


class UserUpdate(BaseModel):
    name: Optional[str] = None
    user_id: Optional[str] = None


class CreateAdminRequest(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str
    phone_number: str
    password: str = Field(min_length=6)

    class Config:
        from_attributes = True
