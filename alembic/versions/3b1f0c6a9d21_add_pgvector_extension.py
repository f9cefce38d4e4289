"""add_pgvector_extension

Revision ID: 3b1f0c6a9d21
Revises:
Create Date: 2026-10-12 09:14:02.118734

"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "3b1f0c6a9d21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")


def downgrade() -> None:
    # Fails while any table still has a vector column
    op.execute("DROP EXTENSION IF EXISTS vector")
