"""Exceptions raised by the attendance services.

Every error carries the HTTP status and the message shown to the end user;
the FastAPI app turns them into responses in one place.
"""
from starlette import status


class MarkitError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)

    @property
    def detail(self):
        return self.message


# ---------------------------------------- Session / check-in errors
class LocationUnavailable(MarkitError):
    message = "Could not get your location. Please enable location services and retry."


class NoActiveSession(MarkitError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "No active attendance session at the moment"


class OutOfRange(MarkitError):
    def __init__(self, distance: float, max_distance: float):
        self.distance = distance
        self.max_distance = max_distance
        super().__init__(
            f"You are {distance:.0f} meters away. (Max: {max_distance:g}m)"
        )

    @property
    def detail(self):
        return {
            "message": self.message,
            "distance": self.distance,
            "maxDistance": self.max_distance,
        }


class AlreadyCheckedIn(MarkitError):
    message = "User has already signed attendance for this session"


class NotCheckedIn(MarkitError):
    message = "User has not checked in to this session"


class CheckoutDisabled(NotCheckedIn):
    message = "Checkout is not enabled for this card"


# ---------------------------------------- Store errors
class StoreWriteFailed(MarkitError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal error. Please try again..."


class PartialWriteFailure(MarkitError):
    """The user's copy was saved but the daily log copy was not. Never raised
    to the caller; attached to the check-in result as a warning."""

    status_code = status.HTTP_200_OK
    message = "Attendance saved, but the daily log could not be updated"


# ---------------------------------------- Administration errors
class CardNotFound(MarkitError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Card not found"


class NotCardOwner(MarkitError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "No permission to manage this card, as you're not its owner"


class NotSessionHost(MarkitError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Only the session host can update the session location"


class UserNotFound(MarkitError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "User not found"


class DuplicateUser(MarkitError):
    message = "A user with this ID already exists on this card"


class InvalidSetting(MarkitError):
    message = "Unknown card setting"


class AlreadySignedIn(MarkitError):
    message = "This ID is already signed in on another device. Ask your admin to reset it."


class InvalidSessionToken(MarkitError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Session expired or invalid. Please sign in again."


class SignOutDisabled(MarkitError):
    message = "Signing out is not enabled for this card"


class ShareUrlMissing(MarkitError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "The base URL for sharing is not configured in the database."
