from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import (
    engine_options,
    get_db,
    require_user_auth,
    single,
    single_payload,
    split_ids,
)
from app.errors import PermissionDeniedError
from app.models.user import User
from app.schemas.common import ListResponse
from app.schemas.user import PasswordUpdate, UserRead
from app.services.user import users as users_service

router = APIRouter(prefix="/users", tags=["users"])


def _read(docs) -> list[UserRead]:
    return [UserRead.model_validate(doc) for doc in docs]


@router.get("", response_model=ListResponse[UserRead])
def find_users(
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return users_service.list_response(db, user, split_ids(ids), options)


@router.post("", response_model=list[UserRead], status_code=status.HTTP_201_CREATED)
def create_users(
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(users_service.create(db, user, payload, options))


@router.patch("", response_model=list[UserRead])
def update_users(
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(users_service.update(db, user, payload, options))


@router.delete("", response_model=list[UserRead])
def remove_users(
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    return _read(users_service.remove(db, user, targets, options))


@router.get("/whoami", response_model=UserRead)
def whoami(
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return UserRead.model_validate(users_service.whoami(db, user))


@router.get("/{username}", response_model=UserRead)
def get_user(
    username: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = users_service.find(db, user, username, options)
    return UserRead.model_validate(single(found, "user", username))


@router.post(
    "/{username}", response_model=UserRead, status_code=status.HTTP_201_CREATED
)
def create_user(
    username: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "username", username)
    return _read(users_service.create(db, user, body))[0]


@router.patch("/{username}", response_model=UserRead)
def update_user(
    username: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "username", username)
    return _read(users_service.update(db, user, body))[0]


@router.patch("/{username}/password", response_model=UserRead)
def update_password(
    username: str,
    payload: PasswordUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    if username != user.username:
        raise PermissionDeniedError("Users can only change their own password.")
    updated = users_service.update_password(
        db, user, payload.old_password, payload.password, payload.confirm_password
    )
    return UserRead.model_validate(updated)


@router.delete("/{username}", response_model=UserRead)
def remove_user(
    username: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(users_service.remove(db, user, username, options))[0]
