from datetime import datetime, timedelta, timezone

from jose import jwt
from pydantic import EmailStr

from markit.utils.authSettings import ALGORITHM, SECRET_KEY


def create_access_token(
    email: EmailStr,
    admin_id: str,
    expires_delta: timedelta,
):
    data_to_encode = {
        "sub": email,
        "admin_id": admin_id,
    }
    expires = datetime.now(timezone.utc) + expires_delta
    data_to_encode.update({"exp": expires})
    return jwt.encode(data_to_encode, SECRET_KEY, algorithm=ALGORITHM)
