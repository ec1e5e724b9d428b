from media_service.models.asset import AssetStatus, MediaAsset, UploadStatus, new_asset_id

__all__ = ["AssetStatus", "MediaAsset", "UploadStatus", "new_asset_id"]
