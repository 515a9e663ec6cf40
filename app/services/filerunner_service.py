"""FileRunner service for storing encryption-card uploads in external storage"""
import httpx
import logging
import os
from typing import Optional, Dict, Any

from app.config import settings
from app.core.exceptions import InternalError, UnavailableError, ValidationError

logger = logging.getLogger(__name__)


class FileRunnerService:
    """HTTP client for the FileRunner object store"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = base_url or settings.FILERUNNER_BASE_URL
        self.api_key = settings.FILERUNNER_API_KEY if api_key is None else api_key
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=60.0,
                headers={
                    "X-API-Key": self.api_key,
                }
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def upload_file(
        self,
        file_content: bytes,
        filename: str,
        content_type: str,
        folder_path: str
    ) -> Dict[str, Any]:
        """
        Upload a file to FileRunner

        Returns:
            FileRunner upload response (file_id, download_url, ...)

        Raises:
            UnavailableError: FileRunner unreachable
            InternalError: FileRunner rejected the upload
        """
        client = await self._get_client()
        try:
            response = await client.post(
                "/api/upload",
                files={"file": (filename, file_content, content_type)},
                data={"folder_path": folder_path}
            )
        except httpx.RequestError as e:
            logger.error(f"FileRunner request error: {str(e)}")
            raise UnavailableError("File storage is temporarily unavailable. Please try again.")

        if response.status_code != 200:
            logger.error(f"FileRunner upload failed: {response.status_code} - {response.text}")
            raise InternalError("File upload failed. Please try uploading your files again.")

        result = response.json()
        logger.info(f"File uploaded to FileRunner: {result.get('file_id')}")
        return result

    def get_download_url(self, download_url: str) -> str:
        """Full download URL from the relative path FileRunner returns"""
        if download_url.startswith('http'):
            return download_url
        return f"{self.base_url}{download_url}"


class CardStorageService:
    """Validates encryption-card uploads and stores them through FileRunner"""

    def __init__(self, filerunner: Optional[FileRunnerService] = None):
        self.filerunner = filerunner or filerunner_service

    @staticmethod
    def _get_file_extension(filename: str) -> str:
        return os.path.splitext(filename or "")[1].lower().lstrip('.')

    def validate(self, content: bytes, filename: str) -> None:
        if not content:
            raise ValidationError("Uploaded file is empty")
        if len(content) > settings.MAX_FILE_SIZE:
            raise ValidationError(
                f"File too large. Maximum size: {settings.MAX_FILE_SIZE // 1024 // 1024}MB"
            )
        if self._get_file_extension(filename) not in settings.ALLOWED_FILE_EXTENSIONS:
            raise ValidationError(
                f"File type not allowed. Allowed types: {', '.join(settings.ALLOWED_FILE_EXTENSIONS)}"
            )

    async def upload_card(self, content: bytes, filename: str, content_type: Optional[str]) -> Dict[str, Any]:
        """
        Store one encryption card

        Returns:
            Card reference: file_id, url, original_name, size, mime_type
        """
        self.validate(content, filename)
        mime_type = content_type or "application/octet-stream"

        result = await self.filerunner.upload_file(
            file_content=content,
            filename=filename,
            content_type=mime_type,
            folder_path=settings.FILERUNNER_CARDS_FOLDER
        )

        file_id = result.get("file_id")
        download_url = result.get("download_url") or f"/api/files/{file_id}"
        return {
            "file_id": file_id,
            "url": self.filerunner.get_download_url(download_url),
            "original_name": filename,
            "size": result.get("size", len(content)),
            "mime_type": result.get("mime_type", mime_type)
        }


# Global service instance
filerunner_service = FileRunnerService()
