import logging

from sqlalchemy.orm import Session

from app.errors import NotFoundError, StoreError, ValidationError
from app.models.mbee import Branch, Element
from app.schemas.mbee import ElementCreate, ElementUpdate
from app.services import ids
from app.services import permissions
from app.services.cascade import collect_subtree, verify_count
from app.services.common import build_index, classify_input, parse_options
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
from app.services.event import EventType, publish_event
from app.services.response import ListResponseMixin
from app.services.store import (
    branches_store,
    elements_store,
    orgs_store,
    projects_store,
    snapshot,
)

logger = logging.getLogger(__name__)

# Every branch starts with this tree; local id -> local parent id.
ROOT_ELEMENTS = {
    "model": None,
    "__mbee__": "model",
    "holding_bin": "__mbee__",
    "undefined": "__mbee__",
}
ROOT_NAMES = {
    "model": "Model",
    "__mbee__": "__mbee__",
    "holding_bin": "holding bin",
    "undefined": "undefined element",
}

ELEMENT_POLICY = UpdatePolicy(
    name="Element",
    schema=ElementUpdate,
    updatable=frozenset(
        {"name", "documentation", "type", "parent", "custom", "archived"}
    ),
    immutable=frozenset({"org", "project", "branch", "source", "target"}),
    columns={"parent": "parent_id"},
)


def load_scope(
    db: Session, org_id: str, project_id: str, branch_id: str, archived: bool = False
):
    """Resolves and checks the org, project and branch an element lives under."""
    ids.validate_segment(org_id, "Org ID")
    org = find_and_validate(db, orgs_store, org_id, archived)
    project = find_and_validate(
        db, projects_store, ids.qualify(org.id, project_id), archived
    )
    branch = find_and_validate(
        db, branches_store, ids.qualify(project.id, branch_id), archived
    )
    return org, project, branch


def reject_tag(branch: Branch, action: str) -> None:
    if branch.tag:
        raise ValidationError(
            f"Cannot {action} elements on the tag branch [{branch.id}].",
            ids=[branch.id],
        )


def _children_of(db: Session, branch_id: str):
    def fetch(frontier: list[str]) -> list[str]:
        return elements_store.find_ids(
            db, {"branch_id": branch_id, "parent_id": frontier}
        )

    return fetch


class Elements(ListResponseMixin):
    @staticmethod
    def find(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branch_id: str,
        element_ids=None,
        options: dict | None = None,
    ) -> list[Element]:
        check_requesting_user(requesting_user)
        opts = parse_options(
            options,
            {"archived", "populate", "populated", "limit", "skip", "subtree"},
            elements_store.populatable,
        )
        kind, requested = classify_input(element_ids, "find")
        org, project, branch = load_scope(
            db, org_id, project_id, branch_id, opts["archived"]
        )
        permissions.read_element(requesting_user, org, project, branch)

        filters: dict = {"branch_id": branch.id}
        if kind == "ids":
            requested = [ids.qualify(branch.id, value) for value in requested]
            if opts["subtree"]:
                requested = collect_subtree(_children_of(db, branch.id), requested)
            filters["id"] = requested
        return elements_store.find(
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
        branch_id: str,
        elements,
        options: dict | None = None,
    ) -> list[Element]:
        check_requesting_user(requesting_user)
        opts = parse_options(
            options, {"populate", "populated"}, elements_store.populatable
        )
        _, items = classify_input(elements, "create")
        org, project, branch = load_scope(db, org_id, project_id, branch_id)
        reject_tag(branch, "create")
        permissions.create_element(requesting_user, org, project, branch)

        payloads = [validate_payload(ElementCreate, item, "element") for item in items]
        element_ids = [ids.qualify(branch.id, payload.id) for payload in payloads]
        reject_duplicates(element_ids, "create")
        reject_existing(db, elements_store, element_ids)

        docs = []
        for element_id, payload in zip(element_ids, payloads):
            if payload.parent is not None:
                parent_id = ids.qualify(branch.id, payload.parent)
            elif ids.local_id(element_id) == "model":
                parent_id = None
            else:
                parent_id = ids.qualify(branch.id, "model")
            doc = Element(
                id=element_id,
                project_id=project.id,
                branch_id=branch.id,
                name=payload.name,
                parent_id=parent_id,
                source_id=(
                    ids.qualify(branch.id, payload.source) if payload.source else None
                ),
                target_id=(
                    ids.qualify(branch.id, payload.target) if payload.target else None
                ),
                documentation=payload.documentation,
                type=payload.type,
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(doc, requesting_user.username)
            docs.append(doc)

        Elements._resolve_references(db, docs)
        Elements._reject_batch_cycles(docs)
        elements_store.insert_many(db, docs)
        logger.info("Created %d elements on branch %s", len(docs), branch.id)
        publish_event(
            EventType.element_created, "element", element_ids, requesting_user.username
        )
        if opts["populate"]:
            return elements_store.find(
                db, {"id": element_ids}, archived=True, populate=opts["populate"]
            )
        return docs

    @staticmethod
    def update(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branch_id: str,
        elements,
        options: dict | None = None,
    ) -> list[Element]:
        check_requesting_user(requesting_user)
        opts = parse_options(
            options, {"populate", "populated"}, elements_store.populatable
        )
        _, updates = classify_input(elements, "update")
        org, project, branch = load_scope(db, org_id, project_id, branch_id)
        reject_tag(branch, "update")
        permissions.update_element(requesting_user, org, project, branch)

        element_ids = [
            ids.qualify(branch.id, value) for value in require_update_ids(updates)
        ]
        reject_duplicates(element_ids, "update")
        updates = [
            {**changes, "id": element_id}
            for changes, element_id in zip(updates, element_ids)
        ]
        found = elements_store.find(db, {"id": element_ids}, archived=True)
        index = require_all_found(elements_store, element_ids, found)

        moves = {
            changes["id"]: ids.qualify(branch.id, changes["parent"])
            for changes in updates
            if isinstance(changes.get("parent"), str)
        }
        if moves:
            Elements._check_moves(db, branch.id, moves)

        updated = update_batch(
            db,
            index,
            updates,
            ELEMENT_POLICY,
            requesting_user.username,
            handlers={"parent": lambda doc, value: {"parent_id": moves[doc.id]}},
        )
        logger.info("Updated %d elements on branch %s", len(updated), branch.id)
        publish_event(
            EventType.element_updated, "element", element_ids, requesting_user.username
        )
        if opts["populate"]:
            return elements_store.find(
                db, {"id": element_ids}, archived=True, populate=opts["populate"]
            )
        return updated

    @staticmethod
    def remove(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        branch_id: str,
        element_ids,
        options: dict | None = None,
    ) -> list[dict]:
        """Removes each element and its whole subtree.

        Returns snapshots of every removed element, targets and descendants.
        With ``soft`` the subtree is archived instead.
        """
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(element_ids, "remove")
        org, project, branch = load_scope(
            db, org_id, project_id, branch_id, archived=True
        )
        reject_tag(branch, "remove")
        permissions.delete_element(requesting_user, org, project, branch)

        requested = [ids.qualify(branch.id, value) for value in requested]
        reject_duplicates(requested, "remove")
        found = elements_store.find(db, {"id": requested}, archived=True)
        require_all_found(elements_store, requested, found)
        roots = [
            element_id
            for element_id in requested
            if ids.local_id(element_id) in ROOT_ELEMENTS
        ]
        if roots:
            raise ValidationError(
                f"Root elements cannot be removed [{', '.join(roots)}].", ids=roots
            )

        subtree = collect_subtree(_children_of(db, branch.id), requested)
        docs = build_index(elements_store.find(db, {"id": subtree}, archived=True))
        removed = [snapshot(docs[element_id]) for element_id in subtree]

        if opts["soft"]:
            expected = sum(1 for doc in docs.values() if not doc.archived)
            count = elements_store.archive_many(
                db, subtree, requesting_user.username
            )
            event = EventType.element_archived
        else:
            expected = len(subtree)
            count = elements_store.delete_many(db, {"id": subtree})
            event = EventType.element_deleted
        try:
            verify_count("elements", expected, count)
        except StoreError:
            db.rollback()
            raise
        db.flush()
        logger.info(
            "Removed %d elements from branch %s (soft=%s)",
            len(subtree),
            branch.id,
            opts["soft"],
        )
        publish_event(event, "element", subtree, requesting_user.username)
        return removed

    @staticmethod
    def remove_all_under(db: Session, scope_ids: list[str]) -> int:
        """Deletes every element under the given project or branch ids."""
        project_ids = [s for s in scope_ids if ids.depth_of(s) == ids.PROJECT_DEPTH]
        branch_ids = [s for s in scope_ids if ids.depth_of(s) == ids.BRANCH_DEPTH]
        count = 0
        if project_ids:
            count += elements_store.delete_many(db, {"project_id": project_ids})
        if branch_ids:
            count += elements_store.delete_many(db, {"branch_id": branch_ids})
        return count

    @staticmethod
    def create_roots(db: Session, branch: Branch, username: str) -> list[Element]:
        docs = []
        for local, parent in ROOT_ELEMENTS.items():
            doc = Element(
                id=ids.qualify(branch.id, local),
                project_id=branch.project_id,
                branch_id=branch.id,
                name=ROOT_NAMES[local],
                parent_id=ids.qualify(branch.id, parent) if parent else None,
                documentation="",
                type="",
                custom={},
                archived=False,
            )
            stamp_created(doc, username)
            docs.append(doc)
        return elements_store.insert_many(db, docs)

    @staticmethod
    def clone_branch(db: Session, source: Branch, target: Branch, username: str) -> int:
        """Copies every element of ``source`` into ``target``, remapping ids."""

        def remap(element_id: str | None) -> str | None:
            if element_id is None:
                return None
            return ids.qualify(target.id, ids.local_id(element_id))

        originals = elements_store.find(db, {"branch_id": source.id}, archived=True)
        copies = []
        for original in originals:
            copy = Element(
                id=remap(original.id),
                project_id=target.project_id,
                branch_id=target.id,
                name=original.name,
                parent_id=remap(original.parent_id),
                source_id=remap(original.source_id),
                target_id=remap(original.target_id),
                documentation=original.documentation,
                type=original.type,
                custom=dict(original.custom or {}),
                archived=original.archived,
            )
            stamp_created(copy, username)
            copies.append(copy)
        elements_store.insert_many(db, copies)
        return len(copies)

    # -- reference resolution -------------------------------------------------

    @staticmethod
    def _resolve_references(db: Session, docs: list[Element]) -> None:
        """Resolves parent/source/target first within the batch, then the store."""
        batch = build_index(docs)
        wanted = {
            ref
            for doc in docs
            for ref in (doc.parent_id, doc.source_id, doc.target_id)
            if ref is not None
        }
        unresolved = {ref for ref in wanted if ref not in batch}
        if unresolved:
            unresolved -= elements_store.existing_ids(db, unresolved)
        if unresolved:
            missing = sorted(unresolved)
            raise NotFoundError(
                f"The following referenced elements were not found: "
                f"[{', '.join(missing)}].",
                ids=missing,
            )

    @staticmethod
    def _reject_batch_cycles(docs: list[Element]) -> None:
        parents = {doc.id: doc.parent_id for doc in docs}
        for doc in docs:
            seen = {doc.id}
            current = parents[doc.id]
            while current in parents:
                if current in seen:
                    raise ValidationError(
                        f"Element [{doc.id}] has a circular parent reference.",
                        ids=[doc.id],
                    )
                seen.add(current)
                current = parents[current]

    @staticmethod
    def _check_moves(db: Session, branch_id: str, moves: dict[str, str]) -> None:
        for element_id, parent_id in moves.items():
            if ids.local_id(element_id) in ROOT_ELEMENTS:
                raise ValidationError(
                    f"Root element [{element_id}] cannot be moved.", ids=[element_id]
                )
            if element_id == parent_id:
                raise ValidationError(
                    f"Element [{element_id}] cannot be its own parent.",
                    ids=[element_id],
                )

        targets = set(moves.values())
        existing = elements_store.existing_ids(db, targets)
        missing = sorted(targets - existing)
        if missing:
            raise NotFoundError(
                f"The following referenced elements were not found: "
                f"[{', '.join(missing)}].",
                ids=missing,
            )

        stored_parents: dict[str, str | None] = {}

        def parent_of(element_id: str) -> str | None:
            if element_id in moves:
                return moves[element_id]
            if element_id not in stored_parents:
                doc = elements_store.find_one(db, element_id)
                stored_parents[element_id] = doc.parent_id if doc else None
            return stored_parents[element_id]

        for element_id, parent_id in moves.items():
            seen = {element_id}
            current = parent_id
            while current is not None:
                if current in seen:
                    raise ValidationError(
                        f"Cannot move element [{element_id}] under [{parent_id}]: "
                        "circular reference.",
                        ids=[element_id],
                    )
                seen.add(current)
                current = parent_of(current)


elements = Elements()
