import hmac
import logging
import uuid

from sqlalchemy.orm import Session

from app.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.models.mbee import Webhook, WebhookType
from app.schemas.webhook import WebhookCreate, WebhookUpdate, check_variant
from app.services import ids
from app.services import permissions
from app.services.common import classify_input, parse_options
from app.services.crud import (
    UpdatePolicy,
    check_requesting_user,
    find_and_validate,
    plan_update,
    apply_plans,
    reject_duplicates,
    require_all_found,
    require_update_ids,
    stamp_created,
    validate_payload,
)
from app.services.event import EventType, publish_event
from app.services.response import ListResponseMixin
from app.services.store import (
    branches_store,
    orgs_store,
    projects_store,
    snapshot,
    webhooks_store,
)

logger = logging.getLogger(__name__)

WEBHOOK_POLICY = UpdatePolicy(
    name="Webhook",
    schema=WebhookUpdate,
    updatable=frozenset(
        {
            "name",
            "triggers",
            "responses",
            "token",
            "token_location",
            "tokenLocation",
            "custom",
            "archived",
        }
    ),
    immutable=frozenset({"type", "reference"}),
)


def load_reference(db: Session, reference_id: str | None, archived: bool = False):
    """Returns ``(org, project, branch)`` for a webhook scope; unset levels are None."""
    if reference_id is None:
        return None, None, None
    segments = ids.parse_id(reference_id)
    if len(segments) > ids.BRANCH_DEPTH:
        raise ValidationError(f"Invalid webhook reference [{reference_id}].")
    ids.create_id(*segments)
    scope = [None, None, None]
    for depth, store in enumerate((orgs_store, projects_store, branches_store), 1):
        if depth > len(segments):
            break
        scope_id = ids.create_id(*segments[:depth])
        scope[depth - 1] = find_and_validate(db, store, scope_id, archived)
    return tuple(scope)


class Webhooks(ListResponseMixin):
    @staticmethod
    def find(
        db: Session,
        requesting_user,
        webhook_ids=None,
        reference: str | None = None,
        options: dict | None = None,
    ) -> list[Webhook]:
        """Finds webhooks by id, or every webhook at one reference scope.

        Webhooks found by id are authorized against their own scope.
        """
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"archived", "limit", "skip"})
        kind, requested = classify_input(webhook_ids, "find")

        if kind == "ids":
            found = webhooks_store.find(
                db,
                {"id": requested},
                archived=opts["archived"],
                limit=opts["limit"],
                skip=opts["skip"],
            )
            for webhook in found:
                scope = load_reference(db, webhook.reference_id, archived=True)
                permissions.read_webhook(requesting_user, *scope)
            return found

        scope = load_reference(db, reference, opts["archived"])
        permissions.read_webhook(requesting_user, *scope)
        return webhooks_store.find(
            db,
            {"reference_id": reference},
            archived=opts["archived"],
            limit=opts["limit"],
            skip=opts["skip"],
        )

    @staticmethod
    def create(
        db: Session, requesting_user, webhooks, options: dict | None = None
    ) -> list[Webhook]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(webhooks, "create")

        payloads = [validate_payload(WebhookCreate, item, "webhook") for item in items]
        created = []
        for payload in payloads:
            scope = load_reference(db, payload.reference)
            permissions.create_webhook(requesting_user, *scope)
            webhook = Webhook(
                id=str(uuid.uuid4()),
                name=payload.name,
                type=payload.type,
                triggers=list(payload.triggers),
                reference_id=payload.reference,
                responses=[
                    response.model_dump() for response in payload.responses or []
                ],
                token=payload.token,
                token_location=payload.token_location,
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(webhook, requesting_user.username)
            created.append(webhook)

        webhooks_store.insert_many(db, created)
        webhook_ids = [webhook.id for webhook in created]
        logger.info("Created webhooks %s", webhook_ids)
        publish_event(
            EventType.webhook_created, "webhook", webhook_ids, requesting_user.username
        )
        return created

    @staticmethod
    def update(
        db: Session, requesting_user, webhooks, options: dict | None = None
    ) -> list[Webhook]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(webhooks, "update")
        webhook_ids = require_update_ids(updates)
        reject_duplicates(webhook_ids, "update")

        found = webhooks_store.find(db, {"id": webhook_ids}, archived=True)
        index = require_all_found(webhooks_store, webhook_ids, found)
        plans = []
        for changes in updates:
            webhook = index[changes["id"]]
            scope = load_reference(db, webhook.reference_id)
            permissions.update_webhook(requesting_user, *scope)
            plan = plan_update(
                webhook, changes, WEBHOOK_POLICY, requesting_user.username
            )
            try:
                check_variant(
                    webhook.type,
                    plan.get("responses", webhook.responses),
                    plan.get("token", webhook.token),
                    plan.get("token_location", webhook.token_location),
                )
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid webhook: {exc}", ids=[webhook.id]
                ) from exc
            plans.append((webhook, plan))

        updated = apply_plans(db, plans)
        logger.info("Updated webhooks %s", webhook_ids)
        publish_event(
            EventType.webhook_updated, "webhook", webhook_ids, requesting_user.username
        )
        return updated

    @staticmethod
    def remove(
        db: Session, requesting_user, webhook_ids, options: dict | None = None
    ) -> list[dict]:
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(webhook_ids, "remove")
        reject_duplicates(requested, "remove")

        found = webhooks_store.find(db, {"id": requested}, archived=True)
        require_all_found(webhooks_store, requested, found)
        for webhook in found:
            scope = load_reference(db, webhook.reference_id, archived=True)
            permissions.delete_webhook(requesting_user, *scope)

        removed = [snapshot(webhook) for webhook in found]
        if opts["soft"]:
            webhooks_store.archive_many(db, requested, requesting_user.username)
        else:
            webhooks_store.delete_many(db, {"id": requested})
        db.flush()
        logger.info("Removed webhooks %s (soft=%s)", requested, opts["soft"])
        publish_event(
            EventType.webhook_deleted, "webhook", requested, requesting_user.username
        )
        return removed

    @staticmethod
    def trigger(
        db: Session, webhook_id: str, headers, payload: dict | None = None
    ) -> list[str]:
        """Fires an incoming webhook, publishing each of its triggers.

        The token is read from the header named by the webhook's
        ``token_location``, falling back to the request body key of that name.
        """
        webhook = webhooks_store.find_one(db, webhook_id, archived=False)
        if webhook is None:
            raise NotFoundError(
                f"The webhook [{webhook_id}] was not found.", ids=[webhook_id]
            )
        if webhook.type != WebhookType.incoming:
            raise ValidationError(
                f"The webhook [{webhook_id}] is not an incoming webhook.",
                ids=[webhook_id],
            )
        location = webhook.token_location or ""
        token = headers.get(location)
        if token is None and isinstance(payload, dict):
            token = payload.get(location)
        if not isinstance(token, str) or not token or not hmac.compare_digest(
            token.encode("utf-8"), (webhook.token or "").encode("utf-8")
        ):
            raise PermissionDeniedError(
                f"Invalid token for the webhook [{webhook_id}].", ids=[webhook_id]
            )
        for trigger in webhook.triggers:
            publish_event(
                trigger,
                "webhook",
                [webhook.reference_id or webhook.id],
                payload={"webhook": webhook.id, "data": payload or {}},
            )
        logger.info("Triggered incoming webhook %s", webhook.id)
        return list(webhook.triggers)

    @staticmethod
    def remove_all_under(db: Session, scope_ids: list[str]) -> int:
        """Deletes every webhook attached to one of the given scope ids."""
        return webhooks_store.delete_many(db, {"reference_id": list(scope_ids)})


webhooks = Webhooks()
