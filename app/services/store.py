import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.errors import ConflictError, StoreError
from app.models.mbee import (
    Artifact,
    Branch,
    Element,
    Organization,
    Project,
    Webhook,
)
from app.models.user import User
from app.services.common import chunked

logger = logging.getLogger(__name__)

_SET_TYPES = (list, tuple, set, frozenset)


def snapshot(doc) -> dict:
    """Plain-dict copy of a document's columns, safe to keep after deletion."""
    data = {}
    for attr in doc.__mapper__.column_attrs:
        value = getattr(doc, attr.key)
        if isinstance(value, dict):
            value = dict(value)
        elif isinstance(value, list):
            value = list(value)
        elif hasattr(value, "value") and not isinstance(value, datetime):
            value = value.value
        data[attr.key] = value
    return data


class ContainmentStore:
    """Find/insert/update/delete over one document table.

    Filters are ``{column: value}`` mappings; a list, tuple or set value means
    "in-set". The first in-set filter is split into pages of
    ``settings.batch_size`` so no single statement grows without bound.
    """

    def __init__(
        self, model, name: str, populatable: tuple[str, ...] = (), key: str = "id"
    ):
        self.model = model
        self.key = key
        self.name = name
        self.populatable = populatable

    @property
    def plural(self) -> str:
        if self.name.endswith(("ch", "s")):
            return f"{self.name}es"
        return f"{self.name}s"

    @property
    def batch_size(self) -> int:
        return settings.batch_size

    # -- filtering -----------------------------------------------------------

    def _pages(self, filters: dict | None):
        filters = dict(filters or {})
        paged_key = next(
            (key for key, value in filters.items() if isinstance(value, _SET_TYPES)),
            None,
        )
        if paged_key is None:
            yield filters
            return
        values = list(dict.fromkeys(filters[paged_key]))
        if not values:
            return
        for page in chunked(values, self.batch_size):
            yield {**filters, paged_key: page}

    def _where(self, stmt, filters: dict):
        for key, value in filters.items():
            column = getattr(self.model, key)
            if isinstance(value, _SET_TYPES):
                stmt = stmt.where(column.in_(list(value)))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        return stmt

    def _fail(self, operation: str, exc: SQLAlchemyError):
        logger.error(
            "Store %s on %s failed: %s", operation, self.model.__tablename__, exc
        )
        return StoreError(f"Failed to {operation} {self.plural.lower()}.")

    # -- reads ---------------------------------------------------------------

    def find(
        self,
        db: Session,
        filters: dict | None = None,
        archived: bool = False,
        populate=(),
        limit: int | None = None,
        skip: int | None = None,
    ) -> list:
        pages = list(self._pages(filters))
        paginate_in_sql = len(pages) == 1
        found = []
        try:
            for page in pages:
                stmt = self._where(select(self.model), page)
                if not archived:
                    stmt = stmt.where(self.model.archived.is_(False))
                for name in populate:
                    stmt = stmt.options(selectinload(getattr(self.model, name)))
                stmt = stmt.order_by(getattr(self.model, self.key).asc())
                if paginate_in_sql:
                    if skip:
                        stmt = stmt.offset(skip)
                    if limit:
                        stmt = stmt.limit(limit)
                found.extend(db.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise self._fail("find", exc) from exc
        if not paginate_in_sql and (skip or limit):
            start = skip or 0
            found = found[start : start + limit] if limit else found[start:]
        return found

    def find_one(self, db: Session, doc_id: str, archived: bool = True):
        docs = self.find(db, {self.key: doc_id}, archived=archived)
        return docs[0] if docs else None

    def find_ids(self, db: Session, filters: dict) -> list[str]:
        found = []
        try:
            for page in self._pages(filters):
                stmt = self._where(select(getattr(self.model, self.key)), page)
                found.extend(db.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise self._fail("find", exc) from exc
        return found

    def existing_ids(self, db: Session, ids) -> set[str]:
        return set(self.find_ids(db, {self.key: list(ids)}))

    # -- writes --------------------------------------------------------------

    def insert_many(self, db: Session, docs: list) -> list:
        try:
            for page in chunked(docs, self.batch_size):
                db.add_all(page)
                db.flush()
        except IntegrityError as exc:
            db.rollback()
            logger.warning(
                "Insert into %s hit a uniqueness conflict: %s",
                self.model.__tablename__,
                exc,
            )
            raise ConflictError(
                f"{self.plural} with the following IDs already exist "
                f"[{', '.join(doc.id for doc in docs)}].",
                ids=[doc.id for doc in docs],
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            raise self._fail("insert", exc) from exc
        return docs

    def update_many(self, db: Session, filters: dict, patch: dict) -> int:
        count = 0
        try:
            for page in self._pages(filters):
                stmt = self._where(update(self.model), page).values(**patch)
                count += db.execute(stmt).rowcount or 0
        except SQLAlchemyError as exc:
            raise self._fail("update", exc) from exc
        return count

    def archive_many(self, db: Session, ids, username: str) -> int:
        return self.update_many(
            db,
            {self.key: list(ids), "archived": False},
            {
                "archived": True,
                "archived_on": datetime.now(timezone.utc),
                "archived_by": username,
                "last_modified_by": username,
            },
        )

    def delete_many(self, db: Session, filters: dict) -> int:
        count = 0
        try:
            for page in self._pages(filters):
                stmt = self._where(delete(self.model), page)
                count += db.execute(stmt).rowcount or 0
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc
        return count


users_store = ContainmentStore(User, "User", key="username")
orgs_store = ContainmentStore(Organization, "Org")
projects_store = ContainmentStore(Project, "Project", populatable=("org",))
branches_store = ContainmentStore(Branch, "Branch", populatable=("project", "source"))
elements_store = ContainmentStore(
    Element, "Element", populatable=("parent", "source", "target", "branch", "project")
)
webhooks_store = ContainmentStore(Webhook, "Webhook")
artifacts_store = ContainmentStore(Artifact, "Artifact", populatable=("project",))
