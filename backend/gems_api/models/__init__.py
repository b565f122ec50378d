from gems_api.models.image_asset import ImageAsset

__all__ = [
    "ImageAsset",
]
