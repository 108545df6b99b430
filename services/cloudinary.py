import logging
from typing import Any, Dict

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from core.config import Settings, settings as default_settings
from core.exceptions import StorageServiceError

logger = logging.getLogger(__name__)

PRODUCT_IMAGES_FOLDER = "climasite/products"


class CloudinaryService:
    def __init__(self, settings: Settings):
        self.settings = settings
        if settings.cloudinary_configured:
            cloudinary.config(
                cloud_name=settings.CLOUDINARY_CLOUD_NAME,
                api_key=settings.CLOUDINARY_API_KEY,
                api_secret=settings.CLOUDINARY_API_SECRET,
                secure=True,
            )

    def upload_product_image(self, file_data: bytes, product_id: int, position: int) -> Dict[str, Any]:
        """
        Upload a product image.

        Returns:
            dict with ``url`` and ``public_id`` of the stored asset
        Raises:
            StorageServiceError: storage not configured or upload failed
        """
        if not self.settings.cloudinary_configured:
            raise StorageServiceError("Image storage is not configured")

        public_id = f"product_{product_id}_{position}"
        try:
            result = cloudinary.uploader.upload(
                file_data,
                public_id=public_id,
                folder=PRODUCT_IMAGES_FOLDER,
                overwrite=True,
                resource_type="image",
                format="webp",
                width=1200,
                height=1200,
                crop="limit",
                quality="auto",
            )
        except CloudinaryError as e:
            logger.error("Cloudinary upload failed for product %s: %s", product_id, e)
            raise StorageServiceError("Failed to store image") from e

        return {"url": result.get("secure_url"), "public_id": result.get("public_id")}

    def delete_image(self, public_id: str) -> None:
        if not self.settings.cloudinary_configured:
            raise StorageServiceError("Image storage is not configured")
        try:
            result = cloudinary.uploader.destroy(public_id)
        except CloudinaryError as e:
            logger.error("Cloudinary delete failed for %s: %s", public_id, e)
            raise StorageServiceError("Failed to delete image") from e

        # "not found" means it is already gone
        if result.get("result") not in ("ok", "not found"):
            logger.error("Cloudinary delete for %s returned %s", public_id, result)
            raise StorageServiceError(f"Failed to delete image: {result.get('result')}")


# Global instance
cloudinary_service = CloudinaryService(default_settings)
