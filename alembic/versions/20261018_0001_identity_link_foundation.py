"""identity link foundation

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01

"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _uuid_column(name: str, dialect_name: str) -> sa.Column[sa.Uuid]:
    kwargs: dict[str, object] = {"nullable": False, "primary_key": True}
    if dialect_name == "postgresql":
        kwargs["server_default"] = sa.text("gen_random_uuid()")
    return sa.Column(name, sa.Uuid(), **kwargs)


def _timestamp_column(name: str) -> sa.Column[sa.DateTime]:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    dialect_name = bind.dialect.name

    if dialect_name == "postgresql":
        op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    audit_metadata_type: sa.TypeEngine[object]
    audit_metadata_default: sa.TextClause
    if dialect_name == "postgresql":
        audit_metadata_type = postgresql.JSONB()
        audit_metadata_default = sa.text("'{}'::jsonb")
    else:
        audit_metadata_type = sa.JSON()
        audit_metadata_default = sa.text("'{}'")

    op.create_table(
        "app_user",
        _uuid_column("id", dialect_name),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("external_subject", sa.Text(), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.CheckConstraint("email = lower(email)", name="ck_app_user_email_lower"),
        sa.PrimaryKeyConstraint("id", name="pk_app_user"),
        sa.UniqueConstraint("email", name="uq_app_user_email"),
    )
    op.create_index(
        "idx_app_user_external_subject",
        "app_user",
        ["external_subject"],
        unique=False,
    )

    op.create_table(
        "audit_event",
        _uuid_column("id", dialect_name),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_id", sa.Text(), nullable=False),
        sa.Column(
            "metadata",
            audit_metadata_type,
            nullable=False,
            server_default=audit_metadata_default,
        ),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(
            ["actor_user_id"],
            ["app_user.id"],
            name="fk_audit_event_actor_user_id_app_user",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_event"),
    )
    op.create_index("idx_audit_event_created_at", "audit_event", ["created_at"], unique=False)
    op.create_index("idx_audit_event_action", "audit_event", ["action"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_audit_event_action", table_name="audit_event")
    op.drop_index("idx_audit_event_created_at", table_name="audit_event")
    op.drop_table("audit_event")
    op.drop_index("idx_app_user_external_subject", table_name="app_user")
    op.drop_table("app_user")
