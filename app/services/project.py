import logging
from functools import partial

from sqlalchemy.orm import Session

from app.models.mbee import Organization, Project
from app.schemas.mbee import ProjectCreate, ProjectUpdate
from app.services import ids
from app.services import permissions
from app.services.artifact import Artifacts
from app.services.branch import Branches
from app.services.cascade import CascadeStep, run_cascade
from app.services.common import classify_input, parse_options
from app.services.crud import (
    UpdatePolicy,
    check_requesting_user,
    find_and_validate,
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
from app.services.response import ListResponseMixin
from app.services.store import branches_store, orgs_store, projects_store, snapshot
from app.services.webhook import Webhooks

logger = logging.getLogger(__name__)

PROJECT_POLICY = UpdatePolicy(
    name="Project",
    schema=ProjectUpdate,
    updatable=frozenset({"name", "visibility", "permissions", "custom", "archived"}),
    immutable=frozenset({"org"}),
)


def load_org(db: Session, org_id: str, archived: bool = False) -> Organization:
    ids.validate_segment(org_id, "Org ID")
    return find_and_validate(db, orgs_store, org_id, archived)


def grant_org_read(org: Organization, usernames) -> None:
    """Project members need at least read on the owning org."""
    merged = {key: list(value) for key, value in (org.permissions or {}).items()}
    for username in usernames:
        if permissions.role_rank(merged.get(username)) == 0:
            merged[username] = permissions.expand_role("read")
    org.permissions = merged


class Projects(ListResponseMixin):
    @staticmethod
    def find(
        db: Session,
        requesting_user,
        org_id: str,
        project_ids=None,
        options: dict | None = None,
    ) -> list[Project]:
        """Finds projects in an org.

        Projects asked for by id must all be readable; without ids, the
        projects the user cannot read are left out.
        """
        check_requesting_user(requesting_user)
        opts = parse_options(
            options,
            {"archived", "populate", "populated", "limit", "skip"},
            projects_store.populatable,
        )
        kind, requested = classify_input(project_ids, "find")
        org = load_org(db, org_id, opts["archived"])

        filters: dict = {"org_id": org.id}
        if kind == "ids":
            filters["id"] = [ids.qualify(org.id, value) for value in requested]
        found = projects_store.find(
            db,
            filters,
            archived=opts["archived"],
            populate=opts["populate"],
            limit=opts["limit"],
            skip=opts["skip"],
        )
        if kind == "ids":
            for project in found:
                permissions.read_project(requesting_user, org, project)
            return found
        return [
            project
            for project in found
            if permissions.can_read_project(requesting_user, org, project)
        ]

    @staticmethod
    def create(
        db: Session,
        requesting_user,
        org_id: str,
        projects,
        options: dict | None = None,
    ) -> list[Project]:
        """Creates projects, each with a default branch and its root elements.

        The creator is granted admin on every new project.
        """
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(projects, "create")
        org = load_org(db, org_id)
        permissions.create_project(requesting_user, org)

        payloads = [validate_payload(ProjectCreate, item, "project") for item in items]
        project_ids = [ids.qualify(org.id, payload.id) for payload in payloads]
        reject_duplicates(project_ids, "create")
        reject_existing(db, projects_store, project_ids)

        created = []
        members: set[str] = set()
        for project_id, payload in zip(project_ids, payloads):
            requested_permissions = {
                username: role
                for username, role in payload.permissions.items()
                if username != requesting_user.username
            }
            project_permissions = merge_permission_changes(
                db, {}, requested_permissions, requesting_user
            )
            project_permissions[requesting_user.username] = permissions.expand_role(
                "admin"
            )
            members.update(project_permissions)
            project = Project(
                id=project_id,
                org_id=org.id,
                name=payload.name,
                visibility=payload.visibility,
                permissions=project_permissions,
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(project, requesting_user.username)
            created.append(project)

        projects_store.insert_many(db, created)
        for project in created:
            Branches.create_default(db, project, requesting_user.username)
        grant_org_read(org, members)
        db.flush()

        logger.info("Created projects %s", project_ids)
        publish_event(
            EventType.project_created, "project", project_ids, requesting_user.username
        )
        return created

    @staticmethod
    def update(
        db: Session,
        requesting_user,
        org_id: str,
        projects,
        options: dict | None = None,
    ) -> list[Project]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(projects, "update")
        org = load_org(db, org_id)

        project_ids = [
            ids.qualify(org.id, value) for value in require_update_ids(updates)
        ]
        reject_duplicates(project_ids, "update")
        updates = [
            {**changes, "id": project_id}
            for changes, project_id in zip(updates, project_ids)
        ]
        found = projects_store.find(db, {"id": project_ids}, archived=True)
        index = require_all_found(projects_store, project_ids, found)
        for project in found:
            permissions.update_project(requesting_user, org, project)

        members: set[str] = set()

        def apply_permissions(project, value) -> dict:
            merged = merge_permission_changes(
                db, project.permissions, value, requesting_user
            )
            members.update(merged)
            return {"permissions": merged}

        updated = update_batch(
            db,
            index,
            updates,
            PROJECT_POLICY,
            requesting_user.username,
            handlers={"permissions": apply_permissions},
        )
        if members:
            grant_org_read(org, members)
            db.flush()
        logger.info("Updated projects %s", project_ids)
        publish_event(
            EventType.project_updated, "project", project_ids, requesting_user.username
        )
        return updated

    @staticmethod
    def remove(
        db: Session,
        requesting_user,
        org_id: str,
        project_ids,
        options: dict | None = None,
    ) -> list[dict]:
        """Removes projects with their branches, elements and webhooks."""
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(project_ids, "remove")
        org = load_org(db, org_id, archived=True)

        requested = [ids.qualify(org.id, value) for value in requested]
        reject_duplicates(requested, "remove")
        found = projects_store.find(db, {"id": requested}, archived=True)
        require_all_found(projects_store, requested, found)
        for project in found:
            permissions.delete_project(requesting_user, org, project)

        removed = [snapshot(project) for project in found]
        if opts["soft"]:
            projects_store.archive_many(db, requested, requesting_user.username)
            db.flush()
            event = EventType.project_archived
        else:
            run_cascade(db, Projects.cascade_steps(db, requested))
            event = EventType.project_deleted
        logger.info("Removed projects %s (soft=%s)", requested, opts["soft"])
        publish_event(event, "project", requested, requesting_user.username)
        return removed

    @staticmethod
    def cascade_steps(db: Session, project_ids: list[str]) -> list[CascadeStep]:
        branch_ids = branches_store.find_ids(db, {"project_id": project_ids})
        return [
            CascadeStep(
                "webhooks",
                partial(Webhooks.remove_all_under, scope_ids=project_ids + branch_ids),
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
                lambda db: projects_store.delete_many(db, {"id": project_ids}),
                expected=len(project_ids),
            ),
        ]

    @staticmethod
    def remove_all_under(db: Session, scope_ids: list[str]) -> int:
        """Deletes every project of the given orgs."""
        return projects_store.delete_many(db, {"org_id": list(scope_ids)})


projects = Projects()
