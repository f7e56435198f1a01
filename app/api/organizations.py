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
from app.models.user import User
from app.schemas.common import ListResponse
from app.schemas.mbee import OrganizationRead
from app.services.organization import organizations

router = APIRouter(prefix="/orgs", tags=["orgs"])


def _read(docs) -> list[OrganizationRead]:
    return [OrganizationRead.model_validate(doc) for doc in docs]


@router.get("", response_model=ListResponse[OrganizationRead])
def find_orgs(
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return organizations.list_response(db, user, split_ids(ids), options)


@router.post(
    "", response_model=list[OrganizationRead], status_code=status.HTTP_201_CREATED
)
def create_orgs(
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(organizations.create(db, user, payload, options))


@router.patch("", response_model=list[OrganizationRead])
def update_orgs(
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(organizations.update(db, user, payload, options))


@router.delete("", response_model=list[OrganizationRead])
def remove_orgs(
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    return _read(organizations.remove(db, user, targets, options))


@router.get("/{org_id}", response_model=OrganizationRead)
def get_org(
    org_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = organizations.find(db, user, org_id, options)
    return OrganizationRead.model_validate(single(found, "org", org_id))


@router.post(
    "/{org_id}", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED
)
def create_org(
    org_id: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", org_id)
    return _read(organizations.create(db, user, body))[0]


@router.patch("/{org_id}", response_model=OrganizationRead)
def update_org(
    org_id: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", org_id)
    return _read(organizations.update(db, user, body))[0]


@router.delete("/{org_id}", response_model=OrganizationRead)
def remove_org(
    org_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(organizations.remove(db, user, org_id, options))[0]
