import enum
import logging

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    user_created = "user.created"
    user_updated = "user.updated"
    user_deleted = "user.deleted"

    org_created = "org.created"
    org_updated = "org.updated"
    org_archived = "org.archived"
    org_deleted = "org.deleted"

    project_created = "project.created"
    project_updated = "project.updated"
    project_archived = "project.archived"
    project_deleted = "project.deleted"

    branch_created = "branch.created"
    branch_updated = "branch.updated"
    branch_archived = "branch.archived"
    branch_deleted = "branch.deleted"

    element_created = "element.created"
    element_updated = "element.updated"
    element_archived = "element.archived"
    element_deleted = "element.deleted"

    webhook_created = "webhook.created"
    webhook_updated = "webhook.updated"
    webhook_deleted = "webhook.deleted"

    artifact_created = "artifact.created"
    artifact_updated = "artifact.updated"
    artifact_archived = "artifact.archived"
    artifact_deleted = "artifact.deleted"


def publish_event(
    event_type: EventType | str,
    entity_type: str,
    entity_ids: list[str],
    actor_id: str | None = None,
    payload: dict | None = None,
) -> None:
    """Fire-and-forget event publishing.

    Queues a Celery task that matches the event against outgoing webhooks.
    Incoming webhooks publish their own trigger names as plain strings.
    Never raises; logs failures and continues.
    """
    name = event_type.value if isinstance(event_type, EventType) else event_type
    try:
        from app.tasks.events import process_event

        process_event.delay(
            event_type=name,
            entity_type=entity_type,
            entity_ids=[str(entity_id) for entity_id in entity_ids],
            actor_id=actor_id,
            payload=payload or {},
        )
        logger.debug("Published event %s for %s %s", name, entity_type, entity_ids)
    except Exception as e:
        logger.exception("Failed to publish event %s: %s", name, e)
