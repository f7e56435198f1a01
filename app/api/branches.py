from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import (
    engine_options,
    get_db,
    render,
    require_user_auth,
    single,
    single_payload,
    split_ids,
)
from app.models.user import User
from app.schemas.common import ListResponse
from app.schemas.mbee import BranchRead, ProjectRead
from app.services.branch import branches

router = APIRouter(
    prefix="/orgs/{org_id}/projects/{project_id}/branches", tags=["branches"]
)

NESTED = {"project": ProjectRead, "source": BranchRead}


def _render(docs, options: dict) -> list[dict]:
    return [render(doc, BranchRead, options, NESTED) for doc in docs]


@router.get("", response_model=ListResponse[dict[str, Any]])
def find_branches(
    org_id: str,
    project_id: str,
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = branches.find(db, user, org_id, project_id, split_ids(ids), options)
    return {"items": _render(found, options), "count": len(found)}


@router.post(
    "", response_model=list[dict[str, Any]], status_code=status.HTTP_201_CREATED
)
def create_branches(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    created = branches.create(db, user, org_id, project_id, payload, options)
    return _render(created, options)


@router.patch("", response_model=list[dict[str, Any]])
def update_branches(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    updated = branches.update(db, user, org_id, project_id, payload, options)
    return _render(updated, options)


@router.delete("", response_model=list[dict[str, Any]])
def remove_branches(
    org_id: str,
    project_id: str,
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    removed = branches.remove(db, user, org_id, project_id, targets, options)
    return _render(removed, {})


@router.get("/{branch_id}", response_model=dict[str, Any])
def get_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = branches.find(db, user, org_id, project_id, branch_id, options)
    return render(single(found, "branch", branch_id), BranchRead, options, NESTED)


@router.post(
    "/{branch_id}", response_model=dict[str, Any], status_code=status.HTTP_201_CREATED
)
def create_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", branch_id)
    created = branches.create(db, user, org_id, project_id, body, options)
    return _render(created, options)[0]


@router.patch("/{branch_id}", response_model=dict[str, Any])
def update_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", branch_id)
    updated = branches.update(db, user, org_id, project_id, body, options)
    return _render(updated, options)[0]


@router.delete("/{branch_id}", response_model=dict[str, Any])
def remove_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    removed = branches.remove(db, user, org_id, project_id, branch_id, options)
    return _render(removed, {})[0]
