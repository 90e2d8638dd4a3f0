"""
Pipeline Orchestrator - runs the stage sequence for one document or sweeps
every document with queued work
"""
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import datetime
import logging

from docledger.core.exceptions import NotFoundError
from docledger.models import Document, DocumentStatus, QueueStatus
from docledger.services.document_service import DocumentService
from docledger.services.inference_service import InferenceClient
from docledger.services.queue_service import ProcessingQueueService
from docledger.services.stage_service import (
    CategorizationStage, ConversionStage, ExtractionStage, OcrStage,
    TransactionGenerator
)
from docledger.services.storage_service import StorageGateway

logger = logging.getLogger(__name__)


@dataclass
class DocumentRunResult:
    document_id: int
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    status: Optional[str] = None
    has_errors: bool = False
    transactions_created: int = 0


@dataclass
class PipelineRunResult:
    documents: List[DocumentRunResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(s["processed"] for d in self.documents for s in d.stages.values())

    @property
    def errors(self) -> int:
        return sum(len(s["errors"]) for d in self.documents for s in d.stages.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documents_processed": len(self.documents),
            "stages_processed": self.processed,
            "errors": self.errors,
            "documents": [
                {
                    "document_id": d.document_id,
                    "status": d.status,
                    "has_errors": d.has_errors,
                    "transactions_created": d.transactions_created,
                    "stages": d.stages,
                }
                for d in self.documents
            ],
        }


class PipelineOrchestrator:
    def __init__(
        self,
        db: Session,
        inference: Optional[InferenceClient] = None,
        storage: Optional[StorageGateway] = None,
    ):
        self.db = db
        self.inference = inference or InferenceClient()
        self.storage = storage or StorageGateway()
        self.queue = ProcessingQueueService(db)
        self.documents = DocumentService(db, self.storage)
        self.stages = [
            stage_cls(db, self.inference, self.storage, self.queue)
            for stage_cls in (ConversionStage, OcrStage, ExtractionStage, CategorizationStage)
        ]
        self.transactions = TransactionGenerator(db)

    def run(self, document_id: Optional[int] = None, owner_id: Optional[str] = None, force: bool = False) -> PipelineRunResult:
        """
        Run the pipeline for one document, or sweep all documents with queued
        work when ``document_id`` is omitted.
        """
        result = PipelineRunResult()

        if document_id is not None:
            query = self.db.query(Document).filter(Document.id == document_id)
            if owner_id is not None:
                query = query.filter(Document.owner_id == owner_id)
            if not query.first():
                raise NotFoundError("Document not found")
            result.documents.append(self.run_document(document_id, force=force))
            return result

        document_ids = self.queue.outstanding_document_ids()
        if owner_id is not None:
            owned = {
                row[0] for row in self.db.query(Document.id).filter(
                    Document.owner_id == owner_id,
                    Document.id.in_(document_ids)
                ).all()
            } if document_ids else set()
            document_ids = [d for d in document_ids if d in owned]

        logger.info(f"Pipeline sweep over {len(document_ids)} document(s)")
        for doc_id in document_ids:
            result.documents.append(self.run_document(doc_id, force=force))
        return result

    def run_document(self, document_id: int, force: bool = False) -> DocumentRunResult:
        run = DocumentRunResult(document_id=document_id)

        for stage in self.stages:
            # A failing stage never stops the later ones
            run.stages[stage.processing_type] = stage.run(document_id, force=force)

        document = self.db.query(Document).filter(Document.id == document_id).first()

        try:
            run.transactions_created = self.transactions.run(document)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Transaction generation failed for document {document_id}")
            run.stages["transactions"] = {"processed": 0, "errors": [{"document_id": document_id, "error": str(e)}], "deferred": 0}

        failed_items = [i for i in self.queue.items_for_document(document_id) if i.status == QueueStatus.FAILED.value]
        run.has_errors = bool(failed_items) or any(s["errors"] for s in run.stages.values())

        if not self.queue.pending_for_document(document_id) and document.status == DocumentStatus.PROCESSING.value:
            self.documents.set_status(document, DocumentStatus.COMPLETED.value)

        document.processing_summary = {
            "run_at": datetime.utcnow().isoformat(),
            "has_errors": run.has_errors,
            "stages": run.stages,
            "failed_stages": [
                {"processing_type": i.processing_type, "error": i.error_message} for i in failed_items
            ],
            "transactions_created": run.transactions_created,
        }
        self.db.commit()

        run.status = document.status
        logger.info(f"Pipeline run for document {document_id} finished: {run.status} (errors: {run.has_errors})")
        return run


def run_pipeline_in_background(document_id: int, inference: Optional[InferenceClient] = None):
    """Background task entry point; owns its own session"""
    from docledger.core.database import SessionLocal

    db = SessionLocal()
    try:
        PipelineOrchestrator(db, inference).run(document_id)
    except Exception:
        db.rollback()
        logger.exception(f"Background pipeline run failed for document {document_id}")
    finally:
        db.close()
