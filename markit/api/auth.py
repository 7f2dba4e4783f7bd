import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from starlette import status

from markit.database.store import TreeStore, get_store
from markit.schemas.accessToken import Token
from markit.schemas.user import CreateAdminRequest
from markit.services.errors import StoreWriteFailed
from markit.utils import authenticate_admin, bcrypt_context, create_access_token, decode_token, find_admin_id
from markit.utils.authSettings import ACCESS_TOKEN_EXPIRE_MINUTES

router = APIRouter(prefix="/auth", tags=["auth"])

oauth2_bearer = OAuth2PasswordBearer(tokenUrl="/auth/token/")

store_dependency = Annotated[TreeStore, Depends(get_store)]


# --------------------------------------------------------------------------------------
@router.post("/create_admin/", status_code=status.HTTP_201_CREATED)
async def create_admin(store: store_dependency, new_admin: CreateAdminRequest):

    if find_admin_id(new_admin.email, store):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email address already exists. Login?",
        )

    hashed_password = bcrypt_context.hash(new_admin.password)
    admin_id = store.generate_key()
    try:
        store.multi_path_update(
            {
                f"admins/{admin_id}": {
                    "firstName": new_admin.first_name,
                    "lastName": new_admin.last_name,
                    "phoneNumber": new_admin.phone_number,
                    "email": new_admin.email,
                },
                f"credentials/{admin_id}": {
                    "email": new_admin.email,
                    "hashedPassword": hashed_password,
                },
            }
        )
    except StoreWriteFailed as e:
        logging.error(f"General error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create account. Please try again.",
        )

    return {"message": "Admin created successfully", "admin_id": admin_id}


@router.post("/token/", response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()], store: store_dependency
):

    if not find_admin_id(form_data.username, store):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Admin not registered yet"
        )

    admin_id = authenticate_admin(form_data.username, form_data.password, store)
    if not admin_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email or password incorrect",
        )

    token = create_access_token(
        form_data.username,
        admin_id,
        timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return {"access_token": token, "token_type": "bearer"}


def get_current_admin(token: str = Depends(oauth2_bearer)):
    return decode_token(token)
