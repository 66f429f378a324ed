"""Create notices table."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision = "0001_create_notices"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notices",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("location", sa.String(10), nullable=False),
        sa.Column("effective_start", sa.DateTime(timezone=True), nullable=False),
        # NULL = permanent; exempt from pruning.
        sa.Column("effective_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("schedule", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("qualifier", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("purpose", sa.String(10), nullable=True),
        sa.Column("scope", sa.String(10), nullable=True),
        sa.Column("traffic_type", sa.String(10), nullable=True),
        sa.Column("raw_payload", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("identifier", name="uq_notices_identifier"),
    )
    op.create_index("ix_notices_location", "notices", ["location"])
    op.create_index("ix_notices_effective_start", "notices", ["effective_start"])
    op.create_index("ix_notices_effective_end", "notices", ["effective_end"])
    op.create_index("ix_notices_created_at", "notices", ["created_at"])
    op.create_index("ix_notices_purpose", "notices", ["purpose"])
    op.create_index("ix_notices_scope", "notices", ["scope"])


def downgrade() -> None:
    op.drop_index("ix_notices_scope", table_name="notices")
    op.drop_index("ix_notices_purpose", table_name="notices")
    op.drop_index("ix_notices_created_at", table_name="notices")
    op.drop_index("ix_notices_effective_end", table_name="notices")
    op.drop_index("ix_notices_effective_start", table_name="notices")
    op.drop_index("ix_notices_location", table_name="notices")
    op.drop_table("notices")
