"""Storage service for handling Supabase storage operations."""

from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import StorageError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def source_document_key(parse_id: str) -> str:
    return f"parses/{parse_id}/source.pdf"


def render_archive_key(parse_id: str) -> str:
    return f"parses/{parse_id}/renders.zip"


def preview_archive_key(parse_id: str) -> str:
    return f"parses/{parse_id}/preview.zip"


class StorageService:
    """Service for managing parse artifacts in Supabase storage."""

    def __init__(self, bucket: Optional[str] = None):
        self.url = settings.storage.url
        self.service_role_key = settings.storage.service_role_key
        self.bucket = bucket or settings.storage.bucket
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    async def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> Dict[str, Any]:
        """Upload (or overwrite) an object.

        Args:
            path: Target path within the bucket.
            content: Object bytes.
            content_type: MIME type stored with the object.

        Returns:
            Dict containing the upload result.

        Raises:
            StorageError: If the upload fails.
        """
        upload_url = f"{self.base_api_url}/object/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    upload_url,
                    headers={**self.headers, "Content-Type": content_type, "x-upsert": "true"},
                    content=content,
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error uploading {path} to Supabase: {e}", exc_info=True)
            raise StorageError(f"Storage upload error: {e}", original_error=e) from e

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed: {response.text}")

        return response.json()

    async def download_bytes(self, path: str) -> bytes:
        """Download an object's bytes.

        Raises:
            StorageError: If the object is missing or the download fails.
        """
        download_url = f"{self.base_api_url}/object/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    download_url, headers=self.headers, timeout=settings.http_timeout
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error downloading {path} from Supabase: {e}", exc_info=True)
            raise StorageError(f"Storage download error: {e}", original_error=e) from e

        if response.status_code != 200:
            raise StorageError(f"Download of {path} failed with {response.status_code}")
        return response.content

    async def delete_objects(self, paths: List[str]) -> None:
        """Delete objects; paths that no longer exist are not an error.

        Raises:
            StorageError: If the storage API rejects the request.
        """
        if not paths:
            return
        delete_url = f"{self.base_api_url}/object/{self.bucket}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    "DELETE",
                    delete_url,
                    headers=self.headers,
                    json={"prefixes": paths},
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage delete error: {e}", original_error=e) from e

        if response.status_code not in (200, 204, 404):
            LOGGER.error(
                f"Failed to delete objects from Supabase: {response.text}",
                extra={"bucket": self.bucket, "paths": paths, "status_code": response.status_code},
            )
            raise StorageError(f"Delete failed: {response.text}")

        LOGGER.info(f"Deleted {len(paths)} storage objects", extra={"paths": paths})

    async def create_download_url(self, path: str, expires_in: int = 3600) -> str:
        """Generate a signed download URL for an object.

        Raises:
            StorageError: If URL generation fails.
        """
        url = f"{self.base_api_url}/object/sign/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url,
                    headers=self.headers,
                    json={"expiresIn": expires_in},
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Signed URL error: {e}", original_error=e) from e

        if response.status_code != 200:
            raise StorageError(f"Signed URL generation failed: {response.text}")

        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageError("Supabase response did not contain signedURL")

        # Supabase returns a path relative to the project URL
        if signed_path.startswith("/"):
            return f"{self.base_api_url}{signed_path}"
        return signed_path
