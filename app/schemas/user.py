from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.mbee import AuditRead, UpdateBase


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
    password: str | None = None
    admin: bool = False
    provider: str = "local"
    fname: str | None = Field(default=None, max_length=80)
    lname: str | None = Field(default=None, max_length=80)
    preferred_name: str | None = Field(default=None, max_length=80)
    email: str | None = Field(default=None, max_length=255)
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False


class UserUpdate(UpdateBase):
    nullable = frozenset({"fname", "lname", "preferred_name", "email"})

    fname: str | None = Field(default=None, max_length=80)
    lname: str | None = Field(default=None, max_length=80)
    preferred_name: str | None = Field(default=None, max_length=80)
    email: str | None = Field(default=None, max_length=255)
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class PasswordUpdate(BaseModel):
    old_password: str
    password: str
    confirm_password: str


class UserRead(AuditRead):
    username: str
    admin: bool = False
    provider: str = "local"
    fname: str | None = None
    lname: str | None = None
    preferred_name: str | None = None
    email: str | None = None
