"""Image uploads to hosted object storage."""

from __future__ import annotations

import mimetypes
import uuid
from pathlib import PurePath

import structlog

from cafe_storefront.backend.client import BackendClient, BackendError
from cafe_storefront.models import RemoteResult

logger = structlog.get_logger(__name__)

_ALLOWED_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp", "image/svg+xml"}


class ImageUploadSink:
    """Stores product images and hands back their public URL."""

    def __init__(self, client: BackendClient, bucket: str = "product-images") -> None:
        self._client = client
        self._bucket = bucket

    def public_url(self, object_path: str) -> str:
        return self._client.url(f"/storage/v1/object/public/{self._bucket}/{object_path}")

    async def upload(
        self,
        filename: str,
        content: bytes,
        content_type: str | None = None,
    ) -> RemoteResult[str]:
        content_type = content_type or mimetypes.guess_type(filename)[0] or ""
        if content_type not in _ALLOWED_TYPES:
            return RemoteResult.fail(f"Unsupported image type: {content_type or 'unknown'}")
        if not content:
            return RemoteResult.fail("The uploaded file is empty.")

        suffix = PurePath(filename).suffix.lower()
        object_path = f"{uuid.uuid4().hex}{suffix}"
        try:
            await self._client.request(
                "POST",
                f"/storage/v1/object/{self._bucket}/{object_path}",
                content=content,
                headers={"Content-Type": content_type, "x-upsert": "false"},
                retry=False,
            )
        except BackendError as exc:
            logger.error("image_upload_failed", filename=filename, error=str(exc))
            return RemoteResult.fail(str(exc))

        url = self.public_url(object_path)
        logger.info("image_uploaded", filename=filename, url=url, size=len(content))
        return RemoteResult[str].ok(url)
