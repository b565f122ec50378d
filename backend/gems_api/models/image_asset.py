from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gems_api.db.base import Base


class ImageAsset(Base):
    __tablename__ = "image_asset"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Extension the variants were stored under; deletion rebuilds names from it.
    extension: Mapped[str] = mapped_column(String(8), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"ImageAsset(id={self.id!r}, extension={self.extension!r})"


Index("ix_image_asset_created_at", ImageAsset.created_at)
