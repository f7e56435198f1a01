import json
import logging

from app.celery_app import celery_app
from app.config import settings
from app.services.ids import ancestors

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.webhooks.deliver_webhooks", ignore_result=True)
def deliver_webhooks(
    event_type: str,
    entity_type: str,
    entity_ids: list[str],
    actor_id: str | None = None,
    payload: dict | None = None,
) -> None:
    """Find matching outgoing webhooks and queue one delivery per response."""
    from app.db import SessionLocal

    db = SessionLocal()
    try:
        _find_and_queue(db, event_type, entity_type, entity_ids, actor_id, payload)
    except Exception as e:
        logger.exception("Failed to deliver webhooks for %s: %s", event_type, e)
    finally:
        db.close()


def _find_and_queue(
    db: "Session",  # type: ignore[name-defined]  # noqa: F821
    event_type: str,
    entity_type: str,
    entity_ids: list[str],
    actor_id: str | None,
    payload: dict | None,
) -> int:
    from sqlalchemy import select

    from app.models.mbee import Webhook, WebhookType

    webhooks = db.scalars(
        select(Webhook)
        .where(Webhook.type == WebhookType.outgoing)
        .where(Webhook.archived.is_(False))
    ).all()

    queued = 0
    for webhook in webhooks:
        if event_type not in (webhook.triggers or []):
            continue
        matched = [
            entity_id
            for entity_id in entity_ids
            if webhook_in_scope(webhook.reference_id, entity_id)
        ]
        if not matched:
            continue
        event_data = {
            "event": event_type,
            "entity_type": entity_type,
            "ids": matched,
            "actor": actor_id,
            "payload": payload or {},
        }
        for response in webhook.responses or []:
            deliver_single_webhook.delay(
                webhook_id=webhook.id,
                url=response["url"],
                method=response.get("method") or "POST",
                headers=response.get("headers") or {},
                payload=(
                    response["data"] if response.get("data") is not None else event_data
                ),
            )
            queued += 1

    logger.info("Queued %d webhook deliveries for event %s", queued, event_type)
    return queued


def webhook_in_scope(reference_id: str | None, entity_id: str) -> bool:
    """Server-level webhooks see everything; others see their own subtree."""
    if reference_id is None:
        return True
    return reference_id in ancestors(entity_id)


@celery_app.task(
    name="app.tasks.webhooks.deliver_single_webhook",
    ignore_result=True,
    bind=True,
    max_retries=5,
    default_retry_delay=10,
)
def deliver_single_webhook(
    self: "celery_app.Task",  # type: ignore[name-defined]
    webhook_id: str,
    url: str,
    method: str,
    headers: dict,
    payload,
) -> None:
    """Send one outgoing webhook response over HTTP, retrying on failure."""
    import httpx

    body = json.dumps(payload, default=str)
    request_headers: dict[str, str] = {"Content-Type": "application/json"}
    request_headers.update(headers or {})

    failed = False
    try:
        with httpx.Client(timeout=settings.webhook_timeout_seconds) as client:
            resp = client.request(method, url, content=body, headers=request_headers)
        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Webhook %s got HTTP %s from %s", webhook_id, resp.status_code, url
            )
            failed = True
    except (httpx.HTTPError, OSError) as e:
        logger.warning("Webhook %s delivery to %s failed: %s", webhook_id, url, e)
        failed = True

    if failed:
        try:
            self.retry(countdown=10 * (2 ** (self.request.retries or 0)))
        except self.MaxRetriesExceededError:
            logger.error("Webhook %s delivery to %s exhausted retries", webhook_id, url)
    else:
        logger.info("Delivered webhook %s to %s", webhook_id, url)
