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
from app.schemas.mbee import OrganizationRead, ProjectRead
from app.services.project import projects

router = APIRouter(prefix="/orgs/{org_id}/projects", tags=["projects"])

NESTED = {"org": OrganizationRead}


def _render(docs, options: dict) -> list[dict]:
    return [render(doc, ProjectRead, options, NESTED) for doc in docs]


@router.get("", response_model=ListResponse[dict[str, Any]])
def find_projects(
    org_id: str,
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = projects.find(db, user, org_id, split_ids(ids), options)
    return {"items": _render(found, options), "count": len(found)}


@router.post(
    "", response_model=list[dict[str, Any]], status_code=status.HTTP_201_CREATED
)
def create_projects(
    org_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _render(projects.create(db, user, org_id, payload, options), options)


@router.patch("", response_model=list[dict[str, Any]])
def update_projects(
    org_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _render(projects.update(db, user, org_id, payload, options), options)


@router.delete("", response_model=list[dict[str, Any]])
def remove_projects(
    org_id: str,
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    removed = projects.remove(db, user, org_id, targets, options)
    return _render(removed, {})


@router.get("/{project_id}", response_model=dict[str, Any])
def get_project(
    org_id: str,
    project_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = projects.find(db, user, org_id, project_id, options)
    return render(single(found, "project", project_id), ProjectRead, options, NESTED)


@router.post(
    "/{project_id}", response_model=dict[str, Any], status_code=status.HTTP_201_CREATED
)
def create_project(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", project_id)
    return _render(projects.create(db, user, org_id, body, options), options)[0]


@router.patch("/{project_id}", response_model=dict[str, Any])
def update_project(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", project_id)
    return _render(projects.update(db, user, org_id, body, options), options)[0]


@router.delete("/{project_id}", response_model=dict[str, Any])
def remove_project(
    org_id: str,
    project_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _render(projects.remove(db, user, org_id, project_id, options), {})[0]
