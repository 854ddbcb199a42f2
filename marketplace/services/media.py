import logging
from typing import Dict, Optional

import cloudinary
import cloudinary.uploader

from marketplace.config import settings

logger = logging.getLogger(__name__)


def is_uploadable(image: Optional[str]) -> bool:
    """Only data URIs and remote URLs are sent to the image host."""
    return bool(image) and (image.startswith("data:image") or image.startswith("http"))


class MediaStore:
    """Thin wrapper over the Cloudinary uploader."""

    def __init__(self):
        cloudinary.config(
            cloud_name=settings.CLOUD_NAME,
            api_key=settings.CLOUD_API_KEY,
            api_secret=settings.CLOUD_SECRET_KEY,
            secure=True,
        )

    def upload(self, image: str, folder: str, width: int) -> Dict[str, str]:
        result = cloudinary.uploader.upload(image, folder=folder, width=width, crop="scale")
        return {"public_id": result["public_id"], "url": result["secure_url"]}

    def destroy(self, public_id: str) -> None:
        cloudinary.uploader.destroy(public_id)
        logger.info(f"Image asset {public_id} destroyed")


media = None


def get_media() -> MediaStore:
    global media
    if media is None:
        media = MediaStore()
    return media
