"""
Processing API Routes - Pipeline sweeps and queue inspection
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import timedelta

from docledger.core.database import get_db
from docledger.core.security import get_current_user_id
from docledger.models import QueueStatus
from docledger.schemas import QueueItemResponse, RequeueStuckRequest
from docledger.services.inference_service import InferenceClient, get_inference_client
from docledger.services.pipeline_service import PipelineOrchestrator
from docledger.services.queue_service import ProcessingQueueService
from docledger.services.storage_service import StorageGateway, get_storage_gateway

router = APIRouter(prefix="/processing", tags=["Processing"])


@router.post("/run")
def run_pipeline(
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage_gateway),
    inference: InferenceClient = Depends(get_inference_client),
    user_id: str = Depends(get_current_user_id)
):
    """Sweep every document of the caller that has queued work"""
    orchestrator = PipelineOrchestrator(db, inference, storage)
    return orchestrator.run(owner_id=user_id).to_dict()


@router.get("/queue", response_model=List[QueueItemResponse])
async def list_queue(
    status: Optional[QueueStatus] = None,
    document_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List queue items for the caller's documents"""
    queue_service = ProcessingQueueService(db)
    return queue_service.list_items(user_id, status.value if status else None, document_id)


@router.post("/requeue-stuck")
async def requeue_stuck(
    request: Optional[RequeueStuckRequest] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Put items left in processing back on the queue"""
    older_than = None
    if request and request.older_than_seconds is not None:
        older_than = timedelta(seconds=request.older_than_seconds)

    queue_service = ProcessingQueueService(db)
    count = queue_service.requeue_stuck(older_than=older_than, owner_id=user_id)
    db.commit()
    return {"requeued": count}
