"""
Storage API Routes - Signed file downloads
"""
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from docledger.services.storage_service import StorageGateway, get_storage_gateway

router = APIRouter(prefix="/storage", tags=["Storage"])


@router.get("/{token}")
async def download_file(
    token: str,
    storage: StorageGateway = Depends(get_storage_gateway)
):
    """Serve a stored file; the signed token is the only credential"""
    storage_path = storage.resolve_signed_token(token)
    return FileResponse(storage.local_path(storage_path))
