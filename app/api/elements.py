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
from app.schemas.mbee import BranchRead, ElementRead, ProjectRead
from app.services.element import elements

router = APIRouter(
    prefix="/orgs/{org_id}/projects/{project_id}/branches/{branch_id}/elements",
    tags=["elements"],
)

NESTED = {
    "parent": ElementRead,
    "source": ElementRead,
    "target": ElementRead,
    "branch": BranchRead,
    "project": ProjectRead,
}


def _render(docs, options: dict) -> list[dict]:
    return [render(doc, ElementRead, options, NESTED) for doc in docs]


@router.get("", response_model=ListResponse[dict[str, Any]])
def find_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = elements.find(
        db, user, org_id, project_id, branch_id, split_ids(ids), options
    )
    return {"items": _render(found, options), "count": len(found)}


@router.post(
    "", response_model=list[dict[str, Any]], status_code=status.HTTP_201_CREATED
)
def create_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    created = elements.create(
        db, user, org_id, project_id, branch_id, payload, options
    )
    return _render(created, options)


@router.patch("", response_model=list[dict[str, Any]])
def update_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    updated = elements.update(
        db, user, org_id, project_id, branch_id, payload, options
    )
    return _render(updated, options)


@router.delete("", response_model=list[dict[str, Any]])
def remove_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    removed = elements.remove(
        db, user, org_id, project_id, branch_id, targets, options
    )
    return _render(removed, {})


@router.get("/{element_id}", response_model=dict[str, Any])
def get_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = elements.find(
        db, user, org_id, project_id, branch_id, element_id, options
    )
    return render(single(found, "element", element_id), ElementRead, options, NESTED)


@router.post(
    "/{element_id}",
    response_model=dict[str, Any],
    status_code=status.HTTP_201_CREATED,
)
def create_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", element_id)
    created = elements.create(db, user, org_id, project_id, branch_id, body, options)
    return _render(created, options)[0]


@router.patch("/{element_id}", response_model=dict[str, Any])
def update_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", element_id)
    updated = elements.update(db, user, org_id, project_id, branch_id, body, options)
    return _render(updated, options)[0]


@router.delete("/{element_id}", response_model=list[dict[str, Any]])
def remove_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    removed = elements.remove(
        db, user, org_id, project_id, branch_id, element_id, options
    )
    return _render(removed, {})
