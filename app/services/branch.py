import logging
from functools import partial

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import MBEEError, StoreError, ValidationError
from app.models.mbee import Branch
from app.schemas.mbee import BranchCreate, BranchUpdate
from app.services import ids
from app.services import permissions
from app.services.cascade import CascadeStep, run_cascade
from app.services.common import classify_input, parse_options
from app.services.crud import (
    UpdatePolicy,
    check_requesting_user,
    find_and_validate,
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

BRANCH_POLICY = UpdatePolicy(
    name="Branch",
    schema=BranchUpdate,
    updatable=frozenset({"name", "custom", "archived"}),
    immutable=frozenset({"org", "project", "source", "tag"}),
)


def load_project(db: Session, org_id: str, project_id: str, archived: bool = False):
    ids.validate_segment(org_id, "Org ID")
    org = find_and_validate(db, orgs_store, org_id, archived)
    project = find_and_validate(
        db, projects_store, ids.qualify(org.id, project_id), archived
    )
    return org, project


def is_default_branch(branch_id: str) -> bool:
    return ids.local_id(branch_id) == settings.default_branch_id


class Branches(ListResponseMixin):
    @staticmethod
    def find(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branch_ids=None,
        options: dict | None = None,
    ) -> list[Branch]:
        check_requesting_user(requesting_user)
        opts = parse_options(
            options,
            {"archived", "populate", "populated", "limit", "skip"},
            branches_store.populatable,
        )
        kind, requested = classify_input(branch_ids, "find")
        org, project = load_project(db, org_id, project_id, opts["archived"])
        permissions.read_branch(requesting_user, org, project)

        filters: dict = {"project_id": project.id}
        if kind == "ids":
            filters["id"] = [ids.qualify(project.id, value) for value in requested]
        return branches_store.find(
            db,
            filters,
            archived=opts["archived"],
            populate=opts["populate"],
            limit=opts["limit"],
            skip=opts["skip"],
        )

    @staticmethod
    def create(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branches,
        options: dict | None = None,
    ) -> list[Branch]:
        """Creates branches, each a copy of the elements on its source branch.

        Every branch in one call must share the same source; the source
        defaults to the project's default branch.
        """
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(branches, "create")
        org, project = load_project(db, org_id, project_id)
        permissions.create_branch(requesting_user, org, project)

        payloads = [validate_payload(BranchCreate, item, "branch") for item in items]
        branch_ids = [ids.qualify(project.id, payload.id) for payload in payloads]
        reject_duplicates(branch_ids, "create")
        sources = {payload.source or settings.default_branch_id for payload in payloads}
        source_ids = {ids.qualify(project.id, source) for source in sources}
        if len(source_ids) > 1:
            raise ValidationError(
                "Branches created together must share the same source branch."
            )
        source = None
        if payloads:
            source = find_and_validate(
                db, branches_store, source_ids.pop(), archived=True
            )
        reject_existing(db, branches_store, branch_ids)

        created = []
        for branch_id, payload in zip(branch_ids, payloads):
            branch = Branch(
                id=branch_id,
                project_id=project.id,
                name=payload.name,
                source_id=source.id,
                tag=payload.tag,
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(branch, requesting_user.username)
            created.append(branch)
        branches_store.insert_many(db, created)

        for branch in created:
            try:
                copied = Elements.clone_branch(
                    db, source, branch, requesting_user.username
                )
            except (MBEEError, SQLAlchemyError) as exc:
                db.rollback()
                logger.error(
                    "Cloning %s into %s failed, rolled back: %s",
                    source.id,
                    branch.id,
                    exc,
                )
                raise StoreError(
                    f"Failed to copy elements from branch [{source.id}] to "
                    f"[{branch.id}]. The branch was not created.",
                    ids=[branch.id],
                ) from exc
            logger.info(
                "Copied %d elements from %s to %s", copied, source.id, branch.id
            )

        logger.info("Created branches %s", branch_ids)
        publish_event(
            EventType.branch_created, "branch", branch_ids, requesting_user.username
        )
        return created

    @staticmethod
    def create_default(db: Session, project, username: str) -> Branch:
        """Creates the default branch of a new project with its root elements."""
        branch = Branch(
            id=ids.qualify(project.id, settings.default_branch_id),
            project_id=project.id,
            name=settings.default_branch_id.capitalize(),
            source_id=None,
            tag=False,
            custom={},
            archived=False,
        )
        stamp_created(branch, username)
        branches_store.insert_many(db, [branch])
        Elements.create_roots(db, branch, username)
        return branch

    @staticmethod
    def update(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branches,
        options: dict | None = None,
    ) -> list[Branch]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(branches, "update")
        org, project = load_project(db, org_id, project_id)

        branch_ids = [
            ids.qualify(project.id, value) for value in require_update_ids(updates)
        ]
        reject_duplicates(branch_ids, "update")
        updates = [
            {**changes, "id": branch_id}
            for changes, branch_id in zip(updates, branch_ids)
        ]
        found = branches_store.find(db, {"id": branch_ids}, archived=True)
        index = require_all_found(branches_store, branch_ids, found)
        for changes in updates:
            branch = index[changes["id"]]
            permissions.update_branch(requesting_user, org, project, branch)
            if branch.tag and set(changes) - {"id", "archived"}:
                raise ValidationError(
                    f"The tag branch [{branch.id}] cannot be updated.", ids=[branch.id]
                )
            if changes.get("archived") is True and is_default_branch(branch.id):
                raise ValidationError(
                    f"The default branch [{branch.id}] cannot be archived.",
                    ids=[branch.id],
                )

        updated = update_batch(
            db, index, updates, BRANCH_POLICY, requesting_user.username
        )
        logger.info("Updated branches %s", branch_ids)
        publish_event(
            EventType.branch_updated, "branch", branch_ids, requesting_user.username
        )
        return updated

    @staticmethod
    def remove(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branch_ids,
        options: dict | None = None,
    ) -> list[dict]:
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(branch_ids, "remove")
        org, project = load_project(db, org_id, project_id, archived=True)

        requested = [ids.qualify(project.id, value) for value in requested]
        reject_duplicates(requested, "remove")
        found = branches_store.find(db, {"id": requested}, archived=True)
        require_all_found(branches_store, requested, found)
        for branch in found:
            permissions.delete_branch(requesting_user, org, project, branch)
            if is_default_branch(branch.id):
                raise ValidationError(
                    f"The default branch [{branch.id}] cannot be removed.",
                    ids=[branch.id],
                )

        removed = [snapshot(branch) for branch in found]
        if opts["soft"]:
            branches_store.archive_many(db, requested, requesting_user.username)
            db.flush()
            event = EventType.branch_archived
        else:
            run_cascade(db, Branches.cascade_steps(requested))
            event = EventType.branch_deleted
        logger.info("Removed branches %s (soft=%s)", requested, opts["soft"])
        publish_event(event, "branch", requested, requesting_user.username)
        return removed

    @staticmethod
    def cascade_steps(branch_ids: list[str]) -> list[CascadeStep]:
        return [
            CascadeStep(
                "webhooks", partial(Webhooks.remove_all_under, scope_ids=branch_ids)
            ),
            CascadeStep(
                "elements", partial(Elements.remove_all_under, scope_ids=branch_ids)
            ),
            CascadeStep(
                "branches",
                lambda db: branches_store.delete_many(db, {"id": branch_ids}),
                expected=len(branch_ids),
            ),
        ]

    @staticmethod
    def remove_all_under(db: Session, scope_ids: list[str]) -> int:
        """Deletes every branch of the given projects."""
        return branches_store.delete_many(db, {"project_id": list(scope_ids)})


branches = Branches()
