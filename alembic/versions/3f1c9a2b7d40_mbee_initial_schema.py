"""mbee initial schema

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "3f1c9a2b7d40"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_by", sa.String(length=36), nullable=True),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("updated_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_modified_by", sa.String(length=36), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("username", sa.String(length=36), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("fname", sa.String(length=80), nullable=True),
        sa.Column("lname", sa.String(length=80), nullable=True),
        sa.Column("preferred_name", sa.String(length=80), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("username"),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_archived", "organizations", ["archived"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("org_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "visibility",
            sa.Enum("internal", "private", name="projectvisibility"),
            nullable=False,
        ),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_org_id", "projects", ["org_id"])
    op.create_index("ix_projects_archived", "projects", ["archived"])

    op.create_table(
        "branches",
        sa.Column("id", sa.String(length=192), nullable=False),
        sa.Column("project_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("source_id", sa.String(length=192), nullable=True),
        sa.Column("tag", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_branches_project_id", "branches", ["project_id"])
    op.create_index("ix_branches_archived", "branches", ["archived"])

    op.create_table(
        "elements",
        sa.Column("id", sa.String(length=256), nullable=False),
        sa.Column("project_id", sa.String(length=128), nullable=False),
        sa.Column("branch_id", sa.String(length=192), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("parent_id", sa.String(length=256), nullable=True),
        sa.Column("source_id", sa.String(length=256), nullable=True),
        sa.Column("target_id", sa.String(length=256), nullable=True),
        sa.Column("documentation", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=120), nullable=False),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_elements_project_id", "elements", ["project_id"])
    op.create_index("ix_elements_branch_id", "elements", ["branch_id"])
    op.create_index("ix_elements_parent_id", "elements", ["parent_id"])
    op.create_index("ix_elements_archived", "elements", ["archived"])
    op.create_index(
        "ix_elements_branch_parent", "elements", ["branch_id", "parent_id"]
    )

    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column(
            "type", sa.Enum("incoming", "outgoing", name="webhooktype"), nullable=False
        ),
        sa.Column("triggers", sa.JSON(), nullable=False),
        sa.Column("reference_id", sa.String(length=192), nullable=True),
        sa.Column("responses", sa.JSON(), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=True),
        sa.Column("token_location", sa.String(length=120), nullable=True),
        sa.Column("custom", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhooks_reference_id", "webhooks", ["reference_id"])
    op.create_index("ix_webhooks_archived", "webhooks", ["archived"])


def downgrade() -> None:
    op.drop_index("ix_webhooks_archived", table_name="webhooks")
    op.drop_index("ix_webhooks_reference_id", table_name="webhooks")
    op.drop_table("webhooks")
    op.drop_index("ix_elements_branch_parent", table_name="elements")
    op.drop_index("ix_elements_archived", table_name="elements")
    op.drop_index("ix_elements_parent_id", table_name="elements")
    op.drop_index("ix_elements_branch_id", table_name="elements")
    op.drop_index("ix_elements_project_id", table_name="elements")
    op.drop_table("elements")
    op.drop_index("ix_branches_archived", table_name="branches")
    op.drop_index("ix_branches_project_id", table_name="branches")
    op.drop_table("branches")
    op.drop_index("ix_projects_archived", table_name="projects")
    op.drop_index("ix_projects_org_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_organizations_archived", table_name="organizations")
    op.drop_table("organizations")
    op.drop_table("users")
    sa.Enum(name="webhooktype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="projectvisibility").drop(op.get_bind(), checkfirst=True)
