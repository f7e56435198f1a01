from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.mbee import ProjectVisibility

Role = str | list[str]


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class CreateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False


class UpdateBase(BaseModel):
    """Partial update; explicit nulls are refused unless listed in ``nullable``."""

    model_config = ConfigDict(extra="forbid")
    nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key, value in data.items():
                if value is None and key not in cls.nullable:
                    raise ValueError(f"{key} cannot be null")
        return data


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False
    archived_on: datetime | None = None
    archived_by: str | None = None
    created_on: datetime | None = None
    created_by: str | None = None
    updated_on: datetime | None = None
    last_modified_by: str | None = None


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------


class OrganizationCreate(CreateBase):
    name: str = Field(min_length=1, max_length=255)
    permissions: dict[str, Role] = Field(default_factory=dict)


class OrganizationUpdate(UpdateBase):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    permissions: dict[str, Role] | None = None
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class OrganizationRead(AuditRead):
    id: str
    name: str
    permissions: dict[str, list[str]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class ProjectCreate(CreateBase):
    name: str = Field(min_length=1, max_length=255)
    visibility: ProjectVisibility = ProjectVisibility.private
    permissions: dict[str, Role] = Field(default_factory=dict)


class ProjectUpdate(UpdateBase):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    visibility: ProjectVisibility | None = None
    permissions: dict[str, Role] | None = None
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class ProjectRead(AuditRead):
    id: str
    org: str = Field(validation_alias="org_id")
    name: str
    visibility: ProjectVisibility
    permissions: dict[str, list[str]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Branch
# ---------------------------------------------------------------------------


class BranchCreate(CreateBase):
    name: str = Field(default="", max_length=255)
    source: str | None = None
    tag: bool = False


class BranchUpdate(UpdateBase):
    name: str | None = Field(default=None, max_length=255)
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class BranchRead(AuditRead):
    id: str
    project: str = Field(validation_alias="project_id")
    name: str
    source: str | None = Field(default=None, validation_alias="source_id")
    tag: bool = False


# ---------------------------------------------------------------------------
# Element
# ---------------------------------------------------------------------------


class ElementCreate(CreateBase):
    name: str = Field(default="", max_length=255)
    parent: str | None = None
    source: str | None = None
    target: str | None = None
    documentation: str = ""
    type: str = Field(default="", max_length=120)

    @model_validator(mode="after")
    def source_and_target_together(self) -> ElementCreate:
        if (self.source is None) != (self.target is None):
            raise ValueError(
                "Element source and target must both be provided or both be absent"
            )
        return self


class ElementUpdate(UpdateBase):
    name: str | None = Field(default=None, max_length=255)
    documentation: str | None = None
    type: str | None = Field(default=None, max_length=120)
    parent: str | None = None
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class ElementRead(AuditRead):
    id: str
    project: str = Field(validation_alias="project_id")
    branch: str = Field(validation_alias="branch_id")
    name: str = ""
    parent: str | None = Field(default=None, validation_alias="parent_id")
    source: str | None = Field(default=None, validation_alias="source_id")
    target: str | None = Field(default=None, validation_alias="target_id")
    documentation: str = ""
    type: str = ""



# ---------------------------------------------------------------------------
# Artifact
# ---------------------------------------------------------------------------


class ArtifactCreate(CreateBase):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    filename: str = Field(min_length=1, max_length=255)
    content_type: str | None = Field(
        default=None, max_length=120, alias="contentType"
    )


class ArtifactUpdate(UpdateBase):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    filename: str | None = Field(default=None, min_length=1, max_length=255)
    content_type: str | None = Field(
        default=None, max_length=120, alias="contentType"
    )
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class ArtifactRevisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hash: str
    size: int = 0
    updated_on: datetime | None = None
    user: str | None = None


class ArtifactRead(AuditRead):
    id: str
    project: str = Field(validation_alias="project_id")
    filename: str
    content_type: str = ""
    hash: str | None = None
    history: list[ArtifactRevisionRead] = Field(default_factory=list)
