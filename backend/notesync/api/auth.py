from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from notesync import config
from notesync.models.auth import LoginRequest, ProfileOut, RegisterRequest, TokenResponse
from notesync.storage.users_store import UsersStore
from notesync.utils.auth_hash import hash_password, verify_password
from notesync.utils.jwt_auth import create_access_token, get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])

users = UsersStore(config.data_dir())


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest):
    try:
        rec = users.create(req.email, req.display_name, hash_password(req.password))
    except FileExistsError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User exists")
    return {"user_id": rec.user_id}


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest):
    rec = users.find_by_email(req.email)
    if rec is None or not verify_password(req.password, rec.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return TokenResponse(access_token=create_access_token(subject=rec.user_id), user_id=rec.user_id)


@router.get("/profile", response_model=ProfileOut)
def profile(user_id: str = Depends(get_current_user)):
    rec = users.get(user_id)
    if rec is None:
        # valid token for a user that no longer exists
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return ProfileOut(**rec.public())
