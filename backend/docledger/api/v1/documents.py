"""
Documents API Routes - Upload, Processing and Posting
"""
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from docledger.core.config import settings
from docledger.core.database import commit_unit_of_work, get_db
from docledger.core.security import get_current_user_id
from docledger.models import DocumentStatus
from docledger.schemas import (
    DocumentResponse, DocumentWithUrl, PostDocumentRequest, PostingResult
)
from docledger.services.document_service import DocumentService
from docledger.services.inference_service import InferenceClient, get_inference_client
from docledger.services.pipeline_service import PipelineOrchestrator, run_pipeline_in_background
from docledger.services.posting_service import PostingService
from docledger.services.storage_service import StorageGateway, get_storage_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


# ==================== DOCUMENTS ====================

@router.post("", response_model=DocumentResponse, status_code=201)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    bank_account_id: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    inference: InferenceClient = Depends(get_inference_client),
    user_id: str = Depends(get_current_user_id)
):
    """Upload a document and queue it for processing"""
    data = await file.read()
    document_service = DocumentService(db, storage)
    document = document_service.upload(
        owner_id=user_id,
        file_name=file.filename,
        content_type=file.content_type,
        data=data,
        bank_account_id=bank_account_id
    )
    db.commit()

    if settings.PIPELINE_RUN_ON_UPLOAD:
        background_tasks.add_task(run_pipeline_in_background, document.id, inference)

    return document


@router.get("", response_model=List[DocumentResponse])
async def list_documents(
    status: Optional[DocumentStatus] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List the caller's documents, newest first"""
    document_service = DocumentService(db)
    return document_service.get_by_owner(user_id, status.value if status else None)


@router.get("/{document_id}", response_model=DocumentWithUrl)
async def get_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    user_id: str = Depends(get_current_user_id)
):
    """Get a document with a time-limited download URL"""
    document_service = DocumentService(db, storage)
    document = document_service.get_by_id(document_id, user_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    response = DocumentWithUrl.model_validate(document)
    response.signed_url = document_service.signed_url(document)
    return response


@router.delete("/{document_id}")
async def delete_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    user_id: str = Depends(get_current_user_id)
):
    """Delete a document and its stored file"""
    document_service = DocumentService(db, storage)
    if not document_service.delete(document_id, user_id):
        raise HTTPException(status_code=404, detail="Document not found")
    db.commit()
    return {"message": "Document deleted"}


# ==================== PROCESSING & POSTING ====================

@router.post("/{document_id}/process")
def process_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    inference: InferenceClient = Depends(get_inference_client),
    user_id: str = Depends(get_current_user_id)
):
    """Run the pipeline for one document now, ignoring retry backoff"""
    orchestrator = PipelineOrchestrator(db, inference, storage)
    result = orchestrator.run(document_id=document_id, owner_id=user_id, force=True)
    return result.to_dict()


@router.post("/{document_id}/post", response_model=PostingResult)
def post_document(
    document_id: int,
    request: Optional[PostDocumentRequest] = None,
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    user_id: str = Depends(get_current_user_id)
):
    """Post a processed document as an invoice or journal entry"""
    kind = request.kind.value if request and request.kind else None
    posting_service = PostingService(db, storage)
    result = commit_unit_of_work(db, lambda: posting_service.post_document(document_id, user_id, kind))
    return result
