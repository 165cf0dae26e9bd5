"""create owner and job tables

Revision ID: 20261012_0001
Revises:
Create Date: 2026-10-12 09:20:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261012_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("business_name", sa.String(length=200), nullable=False),
        sa.Column("business_phone", sa.String(length=64), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_owners_email", "owners", ["email"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "owner_id",
            sa.String(length=64),
            sa.ForeignKey("owners.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("business_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("business_phone", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("customer_name", sa.String(length=200), nullable=False),
        sa.Column("customer_phone", sa.String(length=64), nullable=True),
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("assigned_technician_id", sa.String(length=64), nullable=True),
        sa.Column("assigned_technician_name", sa.String(length=200), nullable=True),
        sa.Column("assigned_technician_phone", sa.String(length=64), nullable=True),
        sa.Column("technician_token", sa.String(length=64), nullable=False, unique=True),
        sa.Column("customer_token", sa.String(length=64), nullable=False, unique=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_jobs_owner_id", "jobs", ["owner_id"])

    op.create_table(
        "job_tasks",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "job_id",
            sa.String(length=64),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("updated_at"),
    )
    op.create_index("ix_job_tasks_job_id", "job_tasks", ["job_id"])

    op.create_table(
        "job_notes",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "job_id",
            sa.String(length=64),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("author_name", sa.String(length=200), nullable=False),
        sa.Column("author_technician_id", sa.String(length=64), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("job_id", "position", name="uq_job_notes_job_id_position"),
    )
    op.create_index("ix_job_notes_job_id", "job_notes", ["job_id"])


def downgrade() -> None:
    op.drop_index("ix_job_notes_job_id", table_name="job_notes")
    op.drop_table("job_notes")
    op.drop_index("ix_job_tasks_job_id", table_name="job_tasks")
    op.drop_table("job_tasks")
    op.drop_index("ix_jobs_owner_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_owners_email", table_name="owners")
    op.drop_table("owners")
