import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProjectVisibility(enum.Enum):
    internal = "internal"
    private = "private"


class WebhookType(enum.Enum):
    incoming = "Incoming"
    outgoing = "Outgoing"


# ---------------------------------------------------------------------------
# Shared audit columns
# ---------------------------------------------------------------------------


class AuditMixin:
    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archived_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived_by: Mapped[str | None] = mapped_column(String(36))
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    created_by: Mapped[str | None] = mapped_column(String(36))
    updated_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    last_modified_by: Mapped[str | None] = mapped_column(String(36))


# ---------------------------------------------------------------------------
# Containment tree: Organization -> Project -> Branch -> Element
# ---------------------------------------------------------------------------


class Organization(AuditMixin, Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    # username -> list of roles, e.g. {"alice": ["read", "write"]}
    permissions: Mapped[dict] = mapped_column(JSON, default=dict)
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<Organization {self.id}>"


class Project(AuditMixin, Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    visibility: Mapped[ProjectVisibility] = mapped_column(
        Enum(ProjectVisibility), default=ProjectVisibility.private
    )
    permissions: Mapped[dict] = mapped_column(JSON, default=dict)
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    org = relationship("Organization", lazy="select")

    def __repr__(self) -> str:
        return f"<Project {self.id}>"


class Branch(AuditMixin, Base):
    __tablename__ = "branches"

    id: Mapped[str] = mapped_column(String(192), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    source_id: Mapped[str | None] = mapped_column(String(192))
    tag: Mapped[bool] = mapped_column(Boolean, default=False)
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    project = relationship("Project", lazy="select")
    source = relationship(
        "Branch",
        primaryjoin="foreign(Branch.source_id) == remote(Branch.id)",
        viewonly=True,
        lazy="select",
    )

    def __repr__(self) -> str:
        return f"<Branch {self.id}>"


class Element(AuditMixin, Base):
    __tablename__ = "elements"
    __table_args__ = (
        Index("ix_elements_branch_parent", "branch_id", "parent_id"),
    )

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    branch_id: Mapped[str] = mapped_column(
        ForeignKey("branches.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), default="")
    # Plain string references: a parent may arrive later in the same batch.
    parent_id: Mapped[str | None] = mapped_column(String(256), index=True)
    source_id: Mapped[str | None] = mapped_column(String(256))
    target_id: Mapped[str | None] = mapped_column(String(256))
    documentation: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str] = mapped_column(String(120), default="")
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    project = relationship("Project", lazy="select")
    branch = relationship("Branch", lazy="select")
    parent = relationship(
        "Element",
        primaryjoin="foreign(Element.parent_id) == remote(Element.id)",
        viewonly=True,
        lazy="select",
    )
    source = relationship(
        "Element",
        primaryjoin="foreign(Element.source_id) == remote(Element.id)",
        viewonly=True,
        lazy="select",
    )
    target = relationship(
        "Element",
        primaryjoin="foreign(Element.target_id) == remote(Element.id)",
        viewonly=True,
        lazy="select",
    )

    def __repr__(self) -> str:
        return f"<Element {self.id}>"


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class Webhook(AuditMixin, Base):
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255))
    type: Mapped[WebhookType] = mapped_column(Enum(WebhookType), nullable=False)
    triggers: Mapped[list] = mapped_column(JSON, default=list)
    # None for server-level webhooks, otherwise an org/project/branch id
    reference_id: Mapped[str | None] = mapped_column(String(192), index=True)
    responses: Mapped[list] = mapped_column(JSON, default=list)
    token: Mapped[str | None] = mapped_column(String(255))
    token_location: Mapped[str | None] = mapped_column(String(120))
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<Webhook {self.id} {self.type.value}>"


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


class Artifact(AuditMixin, Base):
    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(String(192), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255))
    content_type: Mapped[str] = mapped_column(String(120), default="")
    custom: Mapped[dict] = mapped_column(JSON, default=dict)

    project = relationship("Project", lazy="select")
    history = relationship(
        "ArtifactRevision",
        order_by="ArtifactRevision.id",
        lazy="selectin",
        viewonly=True,
    )

    @property
    def hash(self) -> str | None:
        return self.history[-1].hash if self.history else None

    def __repr__(self) -> str:
        return f"<Artifact {self.id}>"


class ArtifactRevision(Base):
    """One stored blob of an artifact; the newest revision is the current one."""

    __tablename__ = "artifact_revisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[str] = mapped_column(
        ForeignKey("artifacts.id"), nullable=False, index=True
    )
    hash: Mapped[str] = mapped_column(String(64), index=True)
    size: Mapped[int] = mapped_column(Integer, default=0)
    updated_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    user: Mapped[str | None] = mapped_column(String(36))
