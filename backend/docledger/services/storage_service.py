"""
Storage Service - Durable file storage and time-limited signed URLs
"""
from pathlib import Path
from typing import Optional
from datetime import datetime
import logging
import uuid

from docledger.core.config import settings
from docledger.core.exceptions import NotFoundError
from docledger.core.security import create_storage_token, decode_storage_token

logger = logging.getLogger(__name__)


class StorageGateway:
    """Stores uploaded bytes on the local filesystem under STORAGE_ROOT"""

    def __init__(self, root: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root = Path(root or settings.STORAGE_ROOT).resolve()
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def _full_path(self, storage_path: str) -> Path:
        full = (self.root / storage_path).resolve()
        # Paths must stay inside the storage root
        if self.root not in full.parents:
            raise NotFoundError("File not found")
        return full

    def save(self, owner_id: str, file_name: str, data: bytes) -> str:
        """Store bytes and return the storage path relative to the root"""
        ext = Path(file_name).suffix.lower().lstrip(".") or "bin"
        stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        storage_path = f"{owner_id}/{stamp}_{uuid.uuid4().hex}.{ext}"

        full = self._full_path(storage_path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

        logger.info(f"Stored {len(data)} bytes at {storage_path}")
        return storage_path

    def read(self, storage_path: str) -> bytes:
        full = self._full_path(storage_path)
        if not full.is_file():
            raise NotFoundError("File not found")
        return full.read_bytes()

    def exists(self, storage_path: str) -> bool:
        try:
            return self._full_path(storage_path).is_file()
        except NotFoundError:
            return False

    def delete(self, storage_path: str) -> bool:
        if not self.exists(storage_path):
            return False
        self._full_path(storage_path).unlink()
        logger.info(f"Deleted stored file {storage_path}")
        return True

    def create_signed_url(self, storage_path: str, expires_in: int = None) -> str:
        """Time-limited retrieval URL for a stored file"""
        token = create_storage_token(storage_path, expires_in or settings.SIGNED_URL_EXPIRE_SECONDS)
        return f"{self.public_base_url}/api/v1/storage/{token}"

    def resolve_signed_token(self, token: str) -> str:
        """Return the storage path a token grants; expired or tampered tokens are rejected"""
        storage_path = decode_storage_token(token)
        if not storage_path or not self.exists(storage_path):
            raise NotFoundError("File not found or link expired")
        return storage_path

    def local_path(self, storage_path: str) -> Path:
        return self._full_path(storage_path)


def get_storage_gateway() -> StorageGateway:
    """Dependency providing the storage gateway"""
    return StorageGateway()
