"""Permission resolution.

Every check either returns ``None`` or raises ``PermissionDeniedError`` naming
the resource and the attempted action. Global admins pass every check.
Deleting orgs, projects, branches, elements and artifacts is global-admin only,
even for resource-level admins; project admins may still archive artifacts.
"""

import logging

from app.errors import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

ROLES = ("read", "write", "admin")
ROLE_RANK = {role: rank for rank, role in enumerate(ROLES, start=1)}
REMOVE_ALL = "remove_all"


# ---------------------------------------------------------------------------
# Role primitives
# ---------------------------------------------------------------------------


def role_rank(roles) -> int:
    if not roles:
        return 0
    if isinstance(roles, str):
        roles = [roles]
    return max((ROLE_RANK.get(role, 0) for role in roles), default=0)


def expand_role(role: str) -> list[str]:
    """``admin`` implies ``write`` implies ``read``."""
    if role not in ROLE_RANK:
        raise ValidationError(f"Invalid permission [{role}].")
    return list(ROLES[: ROLE_RANK[role]])


def has_role(user, doc, role: str) -> bool:
    if user.admin:
        return True
    held = (doc.permissions or {}).get(user.username)
    return role_rank(held) >= ROLE_RANK[role]


def merge_permissions(current: dict | None, changes, actor) -> dict:
    """Applies ``{username: role | "remove_all"}`` to a permissions map.

    Roles are stored expanded. A role may also be given as a list, in which
    case the highest role wins.
    """
    if not isinstance(changes, dict):
        raise ValidationError("Permissions must be an object.")
    merged = {key: list(value) for key, value in (current or {}).items()}
    for username, role in changes.items():
        if username == actor.username:
            raise PermissionDeniedError("User cannot update own permissions.")
        if role == REMOVE_ALL:
            merged.pop(username, None)
            continue
        if isinstance(role, list):
            if not role:
                raise ValidationError(f"Invalid permission for user [{username}].")
            role = ROLES[role_rank(role) - 1] if role_rank(role) else role[0]
        merged[username] = expand_role(role)
    return merged


def _deny(message: str, resource_id: str | None) -> PermissionDeniedError:
    logger.info("Permission denied: %s", message)
    return PermissionDeniedError(message, ids=[resource_id] if resource_id else None)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def create_user(user) -> None:
    if not user.admin:
        raise _deny("User does not have permission to create users.", None)


def read_user(user) -> None:
    return None


def update_user(user, target) -> None:
    if not user.admin and user.username != target.username:
        raise _deny(
            f"User does not have permission to update the user [{target.username}].",
            target.username,
        )


def delete_user(user, target) -> None:
    if not user.admin:
        raise _deny(
            f"User does not have permission to delete the user [{target.username}].",
            target.username,
        )


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


def create_org(user) -> None:
    if not user.admin:
        raise _deny("User does not have permission to create orgs.", None)


def read_org(user, org) -> None:
    if not has_role(user, org, "read"):
        raise _deny(
            f"User does not have permission to find the org [{org.id}].", org.id
        )


def update_org(user, org) -> None:
    if not has_role(user, org, "admin"):
        raise _deny(
            f"User does not have permission to update the org [{org.id}].", org.id
        )


def delete_org(user, org) -> None:
    if not user.admin:
        raise _deny(
            f"User does not have permission to delete the org [{org.id}].", org.id
        )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def create_project(user, org) -> None:
    if not has_role(user, org, "write"):
        raise _deny(
            f"User does not have permission to create projects in the org [{org.id}].",
            org.id,
        )


def can_read_project(user, org, project) -> bool:
    if user.admin:
        return True
    if project.visibility is not None and project.visibility.value == "internal":
        if has_role(user, org, "read"):
            return True
    return has_role(user, project, "read")


def read_project(user, org, project) -> None:
    if not can_read_project(user, org, project):
        raise _deny(
            f"User does not have permission to find the project [{project.id}].",
            project.id,
        )


def update_project(user, org, project) -> None:
    if not has_role(user, project, "admin"):
        raise _deny(
            f"User does not have permission to update the project [{project.id}].",
            project.id,
        )


def delete_project(user, org, project) -> None:
    if not user.admin:
        raise _deny(
            f"User does not have permission to delete the project [{project.id}].",
            project.id,
        )


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def create_branch(user, org, project) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            "User does not have permission to create branches in the project "
            f"[{project.id}].",
            project.id,
        )


def read_branch(user, org, project, branch=None) -> None:
    if not can_read_project(user, org, project):
        raise _deny(
            "User does not have permission to find branches in the project "
            f"[{project.id}].",
            project.id,
        )


def update_branch(user, org, project, branch) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            f"User does not have permission to update the branch [{branch.id}].",
            branch.id,
        )


def delete_branch(user, org, project, branch) -> None:
    if not user.admin:
        raise _deny(
            f"User does not have permission to delete the branch [{branch.id}].",
            branch.id,
        )


# ---------------------------------------------------------------------------
# Elements
# ---------------------------------------------------------------------------


def create_element(user, org, project, branch) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            "User does not have permission to create elements in the branch "
            f"[{branch.id}].",
            branch.id,
        )


def read_element(user, org, project, branch) -> None:
    if not can_read_project(user, org, project):
        raise _deny(
            "User does not have permission to find elements in the branch "
            f"[{branch.id}].",
            branch.id,
        )


def update_element(user, org, project, branch) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            "User does not have permission to update elements in the branch "
            f"[{branch.id}].",
            branch.id,
        )


def delete_element(user, org, project, branch) -> None:
    if not user.admin:
        raise _deny(
            "User does not have permission to delete elements in the branch "
            f"[{branch.id}].",
            branch.id,
        )


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


def create_artifact(user, org, project) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            "User does not have permission to create artifacts in the project "
            f"[{project.id}].",
            project.id,
        )


def read_artifact(user, org, project) -> None:
    if not can_read_project(user, org, project):
        raise _deny(
            "User does not have permission to find artifacts in the project "
            f"[{project.id}].",
            project.id,
        )


def update_artifact(user, org, project, artifact) -> None:
    if not has_role(user, project, "admin"):
        raise _deny(
            f"User does not have permission to update the artifact [{artifact.id}].",
            artifact.id,
        )


def upload_artifact(user, org, project, artifact) -> None:
    if not has_role(user, project, "write"):
        raise _deny(
            "User does not have permission to upload to the artifact "
            f"[{artifact.id}].",
            artifact.id,
        )


def delete_artifact(user, org, project, artifact, soft: bool) -> None:
    """Project admins may archive artifacts; only global admins delete them."""
    allowed = has_role(user, project, "admin") if soft else user.admin
    if not allowed:
        raise _deny(
            f"User does not have permission to delete the artifact [{artifact.id}].",
            artifact.id,
        )


# ---------------------------------------------------------------------------
# Webhooks
#
# Scope is the deepest of (org, project, branch) that is given; ``None`` for
# all three is a server-level webhook.
# ---------------------------------------------------------------------------


def _webhook_scope_id(org, project, branch) -> str | None:
    for doc in (branch, project, org):
        if doc is not None:
            return doc.id
    return None


def _check_webhook(user, action: str, role: str, org, project, branch) -> None:
    scope_id = _webhook_scope_id(org, project, branch)
    if user.admin:
        return
    if org is None:
        raise _deny(
            f"User does not have permission to {action} server-level webhooks.", None
        )
    if project is None:
        allowed = has_role(user, org, role)
    elif role == "read":
        allowed = can_read_project(user, org, project)
    else:
        allowed = has_role(user, project, role)
    if not allowed:
        raise _deny(
            f"User does not have permission to {action} webhooks on [{scope_id}].",
            scope_id,
        )


def create_webhook(user, org=None, project=None, branch=None) -> None:
    _check_webhook(user, "create", "admin", org, project, branch)


def read_webhook(user, org=None, project=None, branch=None) -> None:
    _check_webhook(user, "find", "read", org, project, branch)


def update_webhook(user, org=None, project=None, branch=None) -> None:
    _check_webhook(user, "update", "admin", org, project, branch)


def delete_webhook(user, org=None, project=None, branch=None) -> None:
    _check_webhook(user, "delete", "admin", org, project, branch)
