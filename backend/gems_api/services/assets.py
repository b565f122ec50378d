from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from gems_api.models import ImageAsset


async def record_asset(
    session: AsyncSession,
    asset_id: str,
    extension: str,
    original_name: str,
    mime_type: str,
    uploaded_at: datetime,
) -> ImageAsset:
    asset = ImageAsset(
        id=asset_id,
        extension=extension,
        original_name=original_name[:255],
        mime_type=mime_type,
        created_at=uploaded_at,
    )
    session.add(asset)
    await session.commit()
    return asset


async def get_asset(session: AsyncSession, asset_id: str) -> ImageAsset | None:
    return await session.get(ImageAsset, asset_id)


async def forget_asset(session: AsyncSession, asset_id: str) -> None:
    await session.execute(delete(ImageAsset).where(ImageAsset.id == asset_id))
    await session.commit()
