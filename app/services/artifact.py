import logging
import mimetypes
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, StoreError, ValidationError
from app.models.mbee import Artifact, ArtifactRevision
from app.schemas.mbee import ArtifactCreate, ArtifactUpdate
from app.services import ids
from app.services import permissions
from app.services.blob_store import get_blob_store, sha256_hash
from app.services.branch import load_project
from app.services.cascade import verify_count
from app.services.common import chunked, classify_input, parse_options
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
from app.services.store import artifacts_store, snapshot

logger = logging.getLogger(__name__)

ARTIFACT_POLICY = UpdatePolicy(
    name="Artifact",
    schema=ArtifactUpdate,
    updatable=frozenset(
        {"filename", "content_type", "contentType", "custom", "archived"}
    ),
    immutable=frozenset({"project", "hash", "history"}),
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or DEFAULT_CONTENT_TYPE


def artifact_snapshot(artifact: Artifact) -> dict:
    return {
        **snapshot(artifact),
        "hash": artifact.hash,
        "history": [snapshot(revision) for revision in artifact.history],
    }


def _hashes_of(db: Session, artifact_ids: list[str]) -> set[str]:
    found: set[str] = set()
    for page in chunked(artifact_ids, settings.batch_size):
        stmt = select(ArtifactRevision.hash).where(
            ArtifactRevision.artifact_id.in_(page)
        )
        found.update(db.scalars(stmt).all())
    return found


def _delete_rows(db: Session, artifact_ids: list[str]) -> int:
    try:
        for page in chunked(artifact_ids, settings.batch_size):
            db.execute(
                delete(ArtifactRevision).where(ArtifactRevision.artifact_id.in_(page))
            )
    except SQLAlchemyError as exc:
        logger.error("Deleting artifact revisions failed: %s", exc)
        raise StoreError("Failed to delete artifact revisions.") from exc
    return artifacts_store.delete_many(db, {"id": list(artifact_ids)})


def purge_blobs(db: Session, hashes) -> list[str]:
    """Deletes the blobs no remaining artifact revision points at.

    Blob deletion failures are logged and skipped.
    """
    hashes = sorted(set(hashes))
    referenced: set[str] = set()
    for page in chunked(hashes, settings.batch_size):
        stmt = select(ArtifactRevision.hash).where(ArtifactRevision.hash.in_(page))
        referenced.update(db.scalars(stmt).all())

    store = get_blob_store()
    purged = []
    for blob_hash in hashes:
        if blob_hash in referenced:
            continue
        try:
            store.delete(blob_hash)
        except StoreError as exc:
            logger.warning("Leaving orphaned blob %s: %s", blob_hash, exc.detail)
            continue
        purged.append(blob_hash)
    return purged


class Artifacts(ListResponseMixin):
    @staticmethod
    def find(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        artifact_ids=None,
        options: dict | None = None,
    ) -> list[Artifact]:
        check_requesting_user(requesting_user)
        opts = parse_options(
            options,
            {"archived", "populate", "populated", "limit", "skip"},
            artifacts_store.populatable,
        )
        kind, requested = classify_input(artifact_ids, "find")
        org, project = load_project(db, org_id, project_id, opts["archived"])
        permissions.read_artifact(requesting_user, org, project)

        filters: dict = {"project_id": project.id}
        if kind == "ids":
            filters["id"] = [
                ids.qualify(project.id, value, "artifact") for value in requested
            ]
        return artifacts_store.find(
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
        artifacts,
        options: dict | None = None,
    ) -> list[Artifact]:
        """Creates artifact records. Blobs are attached afterwards with ``upload``."""
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, items = classify_input(artifacts, "create")
        org, project = load_project(db, org_id, project_id)
        permissions.create_artifact(requesting_user, org, project)

        payloads = [
            validate_payload(ArtifactCreate, item, "artifact") for item in items
        ]
        artifact_ids = [
            ids.qualify(project.id, payload.id, "artifact") for payload in payloads
        ]
        reject_duplicates(artifact_ids, "create")
        reject_existing(db, artifacts_store, artifact_ids)

        created = []
        for artifact_id, payload in zip(artifact_ids, payloads):
            artifact = Artifact(
                id=artifact_id,
                project_id=project.id,
                filename=payload.filename,
                content_type=payload.content_type
                or guess_content_type(payload.filename),
                custom=payload.custom,
                archived=payload.archived,
            )
            stamp_created(artifact, requesting_user.username)
            created.append(artifact)
        artifacts_store.insert_many(db, created)

        logger.info("Created artifacts %s", artifact_ids)
        publish_event(
            EventType.artifact_created,
            "artifact",
            artifact_ids,
            requesting_user.username,
        )
        return created

    @staticmethod
    def update(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        artifacts,
        options: dict | None = None,
    ) -> list[Artifact]:
        check_requesting_user(requesting_user)
        parse_options(options, set())
        _, updates = classify_input(artifacts, "update")
        org, project = load_project(db, org_id, project_id)

        artifact_ids = [
            ids.qualify(project.id, value, "artifact")
            for value in require_update_ids(updates)
        ]
        reject_duplicates(artifact_ids, "update")
        updates = [
            {**changes, "id": artifact_id}
            for changes, artifact_id in zip(updates, artifact_ids)
        ]
        found = artifacts_store.find(db, {"id": artifact_ids}, archived=True)
        index = require_all_found(artifacts_store, artifact_ids, found)
        for artifact in found:
            permissions.update_artifact(requesting_user, org, project, artifact)

        updated = update_batch(
            db, index, updates, ARTIFACT_POLICY, requesting_user.username
        )
        logger.info("Updated artifacts %s", artifact_ids)
        publish_event(
            EventType.artifact_updated,
            "artifact",
            artifact_ids,
            requesting_user.username,
        )
        return updated

    @staticmethod
    def upload(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        artifact_id: str,
        data: bytes,
    ) -> Artifact:
        """Stores ``data`` as the artifact's current blob.

        A new revision is recorded only when the content hash changes.
        """
        check_requesting_user(requesting_user)
        if not isinstance(data, bytes) or not data:
            raise ValidationError("Artifact blob cannot be empty.")
        org, project = load_project(db, org_id, project_id)
        artifact_id = ids.qualify(project.id, artifact_id, "artifact")
        artifact = find_and_validate(db, artifacts_store, artifact_id)
        permissions.upload_artifact(requesting_user, org, project, artifact)

        blob_hash = sha256_hash(data)
        if artifact.hash == blob_hash:
            return artifact
        get_blob_store().put(blob_hash, data)

        db.add(
            ArtifactRevision(
                artifact_id=artifact.id,
                hash=blob_hash,
                size=len(data),
                user=requesting_user.username,
            )
        )
        artifact.last_modified_by = requesting_user.username
        artifact.updated_on = datetime.now(timezone.utc)
        db.flush()
        db.expire(artifact, ["history"])

        logger.info("Stored blob %s for artifact %s", blob_hash, artifact.id)
        publish_event(
            EventType.artifact_updated,
            "artifact",
            [artifact.id],
            requesting_user.username,
            payload={"hash": blob_hash},
        )
        return artifact

    @staticmethod
    def download(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        artifact_id: str,
        blob_hash: str | None = None,
    ) -> tuple[Artifact, bytes]:
        """Returns the artifact and its current blob, or an older one by hash."""
        check_requesting_user(requesting_user)
        org, project = load_project(db, org_id, project_id)
        permissions.read_artifact(requesting_user, org, project)
        artifact_id = ids.qualify(project.id, artifact_id, "artifact")
        artifact = artifacts_store.find_one(db, artifact_id, archived=False)
        if artifact is None:
            raise NotFoundError(
                f"The artifact [{artifact_id}] was not found.", ids=[artifact_id]
            )

        known = [revision.hash for revision in artifact.history]
        wanted = blob_hash or artifact.hash
        if wanted is None or wanted not in known:
            raise NotFoundError(
                f"The artifact [{artifact_id}] has no blob "
                f"[{wanted or 'current'}].",
                ids=[artifact_id],
            )
        return artifact, get_blob_store().get(wanted)

    @staticmethod
    def remove(
        db: Session,
        requesting_user,
        org_id: str,
        project_id: str,
        artifact_ids,
        options: dict | None = None,
    ) -> list[dict]:
        """Removes artifacts and any blobs no other artifact still uses.

        With ``soft`` the artifacts are archived and their blobs kept.
        """
        check_requesting_user(requesting_user)
        opts = parse_options(options, {"soft"})
        _, requested = classify_input(artifact_ids, "remove")
        org, project = load_project(db, org_id, project_id, archived=True)

        requested = [ids.qualify(project.id, value, "artifact") for value in requested]
        reject_duplicates(requested, "remove")
        found = artifacts_store.find(db, {"id": requested}, archived=True)
        require_all_found(artifacts_store, requested, found)
        for artifact in found:
            permissions.delete_artifact(
                requesting_user, org, project, artifact, opts["soft"]
            )

        removed = [artifact_snapshot(artifact) for artifact in found]
        hashes = {revision.hash for artifact in found for revision in artifact.history}
        if opts["soft"]:
            expected = sum(1 for artifact in found if not artifact.archived)
            count = artifacts_store.archive_many(
                db, requested, requesting_user.username
            )
            event = EventType.artifact_archived
        else:
            expected = len(requested)
            count = _delete_rows(db, requested)
            event = EventType.artifact_deleted
        try:
            verify_count("artifacts", expected, count)
        except StoreError:
            db.rollback()
            raise
        db.flush()
        if not opts["soft"]:
            purge_blobs(db, hashes)

        logger.info("Removed artifacts %s (soft=%s)", requested, opts["soft"])
        publish_event(event, "artifact", requested, requesting_user.username)
        return removed

    @staticmethod
    def remove_all_under(db: Session, scope_ids: list[str]) -> int:
        """Deletes every artifact of the given projects along with unused blobs."""
        artifact_ids = artifacts_store.find_ids(db, {"project_id": list(scope_ids)})
        hashes = _hashes_of(db, artifact_ids)
        count = _delete_rows(db, artifact_ids)
        purge_blobs(db, hashes)
        return count


artifacts = Artifacts()
