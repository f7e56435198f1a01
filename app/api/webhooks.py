from typing import Any

from fastapi import APIRouter, Body, Depends, Request, status
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
from app.schemas.webhook import WebhookRead
from app.services.webhook import webhooks

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _read(docs) -> list[WebhookRead]:
    return [WebhookRead.model_validate(doc) for doc in docs]


@router.get("", response_model=ListResponse[WebhookRead])
def find_webhooks(
    ids: str | None = None,
    reference: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return webhooks.list_response(db, user, split_ids(ids), reference, options)


@router.post("", response_model=list[WebhookRead], status_code=status.HTTP_201_CREATED)
def create_webhooks(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(webhooks.create(db, user, payload))


@router.patch("", response_model=list[WebhookRead])
def update_webhooks(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(webhooks.update(db, user, payload))


@router.delete("", response_model=list[WebhookRead])
def remove_webhooks(
    payload: Any = Body(default=None),
    ids: str | None = None,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    targets = payload if payload is not None else split_ids(ids)
    return _read(webhooks.remove(db, user, targets, options))


@router.post("/trigger/{webhook_id}", status_code=status.HTTP_200_OK)
def trigger_webhook(
    webhook_id: str,
    request: Request,
    payload: Any = Body(default=None),
    db: Session = Depends(get_db),
):
    triggered = webhooks.trigger(db, webhook_id, request.headers, payload)
    return {"id": webhook_id, "triggers": triggered}


@router.get("/{webhook_id}", response_model=WebhookRead)
def get_webhook(
    webhook_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    found = webhooks.find(db, user, webhook_id, options=options)
    return WebhookRead.model_validate(single(found, "webhook", webhook_id))


@router.patch("/{webhook_id}", response_model=WebhookRead)
def update_webhook(
    webhook_id: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    body = single_payload(payload, "id", webhook_id)
    return _read(webhooks.update(db, user, body))[0]


@router.delete("/{webhook_id}", response_model=WebhookRead)
def remove_webhook(
    webhook_id: str,
    options: dict = Depends(engine_options),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_auth),
):
    return _read(webhooks.remove(db, user, webhook_id, options))[0]
