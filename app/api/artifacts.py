from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session
from starlette.responses import Response

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
from app.schemas.mbee import ArtifactRead, ProjectRead
from app.services.artifact import artifacts

router = APIRouter(
    prefix="/orgs/{org_id}/projects/{project_id}/artifacts", tags=["artifacts"]
)

NESTED = {"project": ProjectRead}


def _render(docs, options: dict) -> list[dict]:
    return [render(doc, ArtifactRead, options, NESTED) for doc in docs]


@router.get("", response_model=ListResponse[dict[str, Any]])
def find_artifacts(
    org_id: str,
    project_id: str,
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = artifacts.find(db, user, org_id, project_id, split_ids(ids), options)
    return {"items": _render(found, options), "count": len(found)}


@router.post(
    "", response_model=list[dict[str, Any]], status_code=status.HTTP_201_CREATED
)
def create_artifacts(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    created = artifacts.create(db, user, org_id, project_id, payload, options)
    return _render(created, options)


@router.patch("", response_model=list[dict[str, Any]])
def update_artifacts(
    org_id: str,
    project_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    updated = artifacts.update(db, user, org_id, project_id, payload, options)
    return _render(updated, options)


@router.delete("", response_model=list[dict[str, Any]])
def remove_artifacts(
    org_id: str,
    project_id: str,
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    removed = artifacts.remove(db, user, org_id, project_id, targets, options)
    return _render(removed, {})


@router.get("/{artifact_id}", response_model=dict[str, Any])
def get_artifact(
    org_id: str,
    project_id: str,
    artifact_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = artifacts.find(db, user, org_id, project_id, artifact_id, options)
    return render(
        single(found, "artifact", artifact_id), ArtifactRead, options, NESTED
    )


@router.post(
    "/{artifact_id}",
    response_model=dict[str, Any],
    status_code=status.HTTP_201_CREATED,
)
def create_artifact(
    org_id: str,
    project_id: str,
    artifact_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", artifact_id)
    created = artifacts.create(db, user, org_id, project_id, body, options)
    return _render(created, options)[0]


@router.patch("/{artifact_id}", response_model=dict[str, Any])
def update_artifact(
    org_id: str,
    project_id: str,
    artifact_id: str,
    payload: Any = Body(...),
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", artifact_id)
    updated = artifacts.update(db, user, org_id, project_id, body, options)
    return _render(updated, options)[0]


@router.delete("/{artifact_id}", response_model=dict[str, Any])
def remove_artifact(
    org_id: str,
    project_id: str,
    artifact_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    removed = artifacts.remove(db, user, org_id, project_id, artifact_id, options)
    return _render(removed, {})[0]


@router.put("/{artifact_id}/blob", response_model=dict[str, Any])
def upload_artifact_blob(
    org_id: str,
    project_id: str,
    artifact_id: str,
    data: bytes = Body(..., media_type="application/octet-stream"),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    artifact = artifacts.upload(db, user, org_id, project_id, artifact_id, data)
    return render(artifact, ArtifactRead, {})


@router.get("/{artifact_id}/blob")
def download_artifact_blob(
    org_id: str,
    project_id: str,
    artifact_id: str,
    hash: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    artifact, data = artifacts.download(
        db, user, org_id, project_id, artifact_id, hash
    )
    filename = artifact.filename.replace('"', "")
    return Response(
        content=data,
        media_type=artifact.content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
