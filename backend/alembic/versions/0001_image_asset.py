"""image asset registry"""

from alembic import op
import sqlalchemy as sa

revision = "0001_image_asset"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "image_asset",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("extension", sa.String(length=8), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_image_asset_created_at", "image_asset", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_image_asset_created_at", table_name="image_asset")
    op.drop_table("image_asset")
