import logging
from functools import partial

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ValidationError
from app.models.mbee import Organization
from app.schemas.mbee import OrganizationCreate, OrganizationUpdate
from app.services import ids
from app.services import permissions
from app.services.artifact import Artifacts
from app.services.branch import Branches
from app.services.cascade import CascadeStep, run_cascade
from app.services.common import classify_input, parse_options
from app.services.crud import (
    UpdatePolicy,
    check_requesting_user,
    merge_permission_changes,
    reject_duplicates,
    reject_existing,
    require_all_found,
    require_update_ids,
    stamp_created,
    update_batch,
    validate_payload,
)
from app.services.element import Elements
from app.services.event import EventType, publish_event
from app.services.project import Projects
from app.services.response import ListResponseMixin
from app.services.store import branches_store, orgs_store, projects_store, snapshot
from app.services.webhook import Webhooks

logger = logging.getLogger(__name__)

ORG_POLICY = UpdatePolicy(
    name="Org",
    schema=OrganizationUpdate,
    updatable=frozenset({"name", "permissions", "custom", "archived"}),
)


def is_default_org(org_id: str) -> bool:
    return org_id == settings.default_org_id


class Organizations(ListResponseMixin):
    @staticmethod
    def find(
        db: Session, requesting_user, org_ids=None, options: dict | None = None
    ) -> list[Organization]:
        """Finds orgs by id, or every org the user can read."""
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"archived", "limit", "skip"})
        kind, requested = classify_input(org_ids, "find")

        if kind == "ids":
            for org_id in requested:
                ids.validate_segment(org_id, "Org ID")
            found = orgs_store.find(
                db,
                {"id": requested},
                archived=opts["archived"],
                limit=opts["limit"],
                skip=opts["skip"],
            )
            for org in found:
                permissions.read_org(requesting_user, org)
            return found

        found = orgs_store.find(db, {}, archived=opts["archived"])
        readable = [
            org for org in found if permissions.has_role(requesting_user, org, "read")
        ]
        start = opts["skip"] or 0
        if opts["limit"]:
            return readable[start : start + opts["limit"]]
        return readable[start:]

    @staticmethod
    def create(
        db: Session, requesting_user, orgs, options: dict | None = None
    ) -> list[Organization]:
        """Creates orgs; the creator is granted admin on each one."""
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(orgs, "create")
        permissions.create_org(requesting_user)

        payloads = [validate_payload(OrganizationCreate, item, "org") for item in items]
        org_ids = [ids.create_id(payload.id) for payload in payloads]
        reject_duplicates(org_ids, "create")
        reject_existing(db, orgs_store, org_ids)

        created = []
        for payload in payloads:
            requested_permissions = {
                username: role
                for username, role in payload.permissions.items()
                if username != requesting_user.username
            }
            org_permissions = merge_permission_changes(
                db, {}, requested_permissions, requesting_user
            )
            org_permissions[requesting_user.username] = permissions.expand_role("admin")
            org = Organization(
                id=payload.id,
                name=payload.name,
                permissions=org_permissions,
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(org, requesting_user.username)
            created.append(org)

        orgs_store.insert_many(db, created)
        logger.info("Created orgs %s", org_ids)
        publish_event(EventType.org_created, "org", org_ids, requesting_user.username)
        return created

    @staticmethod
    def update(
        db: Session, requesting_user, orgs, options: dict | None = None
    ) -> list[Organization]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(orgs, "update")
        org_ids = require_update_ids(updates)
        reject_duplicates(org_ids, "update")

        found = orgs_store.find(db, {"id": org_ids}, archived=True)
        index = require_all_found(orgs_store, org_ids, found)
        for changes in updates:
            org = index[changes["id"]]
            permissions.update_org(requesting_user, org)
            if changes.get("archived") is True and is_default_org(org.id):
                raise ValidationError(
                    f"The default org [{org.id}] cannot be archived.", ids=[org.id]
                )

        updated = update_batch(
            db,
            index,
            updates,
            ORG_POLICY,
            requesting_user.username,
            handlers={
                "permissions": lambda org, value: {
                    "permissions": merge_permission_changes(
                        db, org.permissions, value, requesting_user
                    )
                }
            },
        )
        logger.info("Updated orgs %s", org_ids)
        publish_event(EventType.org_updated, "org", org_ids, requesting_user.username)
        return updated

    @staticmethod
    def remove(
        db: Session, requesting_user, org_ids, options: dict | None = None
    ) -> list[dict]:
        """Removes orgs with everything beneath them.

        Webhooks, artifacts, elements, branches, projects and finally the orgs are
        deleted in that order, each step committed before the next.
        """
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(org_ids, "remove")
        reject_duplicates(requested, "remove")

        found = orgs_store.find(db, {"id": requested}, archived=True)
        require_all_found(orgs_store, requested, found)
        for org in found:
            permissions.delete_org(requesting_user, org)
            if is_default_org(org.id):
                raise ValidationError(
                    f"The default org [{org.id}] cannot be removed.", ids=[org.id]
                )

        removed = [snapshot(org) for org in found]
        if opts["soft"]:
            orgs_store.archive_many(db, requested, requesting_user.username)
            db.flush()
            event = EventType.org_archived
        else:
            run_cascade(db, Organizations.cascade_steps(db, requested))
            event = EventType.org_deleted
        logger.info("Removed orgs %s (soft=%s)", requested, opts["soft"])
        publish_event(event, "org", requested, requesting_user.username)
        return removed

    @staticmethod
    def cascade_steps(db: Session, org_ids: list[str]) -> list[CascadeStep]:
        project_ids = projects_store.find_ids(db, {"org_id": org_ids})
        branch_ids = branches_store.find_ids(db, {"project_id": project_ids})
        return [
            CascadeStep(
                "webhooks",
                partial(
                    Webhooks.remove_all_under,
                    scope_ids=org_ids + project_ids + branch_ids,
                ),
            ),
            CascadeStep(
                "artifacts",
                partial(Artifacts.remove_all_under, scope_ids=project_ids),
            ),
            CascadeStep(
                "elements", partial(Elements.remove_all_under, scope_ids=project_ids)
            ),
            CascadeStep(
                "branches",
                partial(Branches.remove_all_under, scope_ids=project_ids),
                expected=len(branch_ids),
            ),
            CascadeStep(
                "projects",
                partial(Projects.remove_all_under, scope_ids=org_ids),
                expected=len(project_ids),
            ),
            CascadeStep(
                "orgs",
                lambda db: orgs_store.delete_many(db, {"id": org_ids}),
                expected=len(org_ids),
            ),
        ]

    @staticmethod
    def ensure_default_org(db: Session) -> Organization:
        org = orgs_store.find_one(db, settings.default_org_id)
        if org is not None:
            return org
        org = Organization(
            id=settings.default_org_id,
            name=settings.default_org_name,
            permissions={},
            custom={},
            archived=False,
        )
        stamp_created(org, "system")
        orgs_store.insert_many(db, [org])
        logger.info("Created default org %s", org.id)
        return org


organizations = Organizations()
