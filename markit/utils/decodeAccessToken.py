from fastapi import HTTPException, status
from jose import JWTError, jwt

from markit.utils.authSettings import ALGORITHM, SECRET_KEY


def decode_token(token: str):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email = payload.get("sub")
        admin_id = payload.get("admin_id")

        if not all([email, admin_id]):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate user",
            )

        return {
            "email": email,
            "admin_id": admin_id,
        }
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user.",
        )
