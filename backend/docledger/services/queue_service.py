"""
Processing Queue Service - Durable per-stage work list with atomic claim
"""
from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from datetime import datetime, timedelta
import logging

from docledger.core.config import settings
from docledger.models import Document, ProcessingQueueItem, ProcessingType, QueueStatus

logger = logging.getLogger(__name__)

# Stage order and the priority each stage is enqueued with
STAGE_PRIORITIES = [
    (ProcessingType.CONVERSION.value, 1),
    (ProcessingType.OCR.value, 2),
    (ProcessingType.EXTRACTION.value, 3),
    (ProcessingType.CATEGORIZATION.value, 4),
]

NON_TERMINAL_STATUSES = (QueueStatus.QUEUED.value, QueueStatus.PROCESSING.value)


class ProcessingQueueService:
    def __init__(
        self,
        db: Session,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.db = db
        self.max_attempts = max_attempts or settings.PIPELINE_MAX_ATTEMPTS
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.PIPELINE_RETRY_BASE_SECONDS
        )
        self.lease_seconds = lease_seconds or settings.PIPELINE_LEASE_SECONDS

    def get_item(self, document_id: int, processing_type: str) -> Optional[ProcessingQueueItem]:
        return self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.document_id == document_id,
            ProcessingQueueItem.processing_type == processing_type
        ).first()

    def enqueue(self, document: Document, processing_type: str, priority: int = 5) -> ProcessingQueueItem:
        """Add a stage item for the document; returns the existing item if there is one"""
        existing = self.get_item(document.id, processing_type)
        if existing:
            return existing

        item = ProcessingQueueItem(
            document_id=document.id,
            processing_type=processing_type,
            status=QueueStatus.QUEUED.value,
            priority=priority,
            attempts=0
        )
        self.db.add(item)
        self.db.flush()
        return item

    def enqueue_all_stages(self, document: Document) -> List[ProcessingQueueItem]:
        return [self.enqueue(document, stage, priority) for stage, priority in STAGE_PRIORITIES]

    def next_candidates(
        self,
        processing_type: str,
        document_id: Optional[int] = None,
        due_only: bool = True,
        limit: int = 20
    ) -> List[ProcessingQueueItem]:
        """Queued items of a stage, highest priority and oldest first"""
        query = self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.processing_type == processing_type,
            ProcessingQueueItem.status == QueueStatus.QUEUED.value
        )
        if document_id is not None:
            query = query.filter(ProcessingQueueItem.document_id == document_id)
        if due_only:
            query = query.filter(or_(
                ProcessingQueueItem.next_attempt_at.is_(None),
                ProcessingQueueItem.next_attempt_at <= datetime.utcnow()
            ))
        return query.order_by(
            ProcessingQueueItem.priority,
            ProcessingQueueItem.created_at,
            ProcessingQueueItem.id
        ).limit(limit).all()

    def claim(self, item: ProcessingQueueItem) -> bool:
        """
        Atomically move an item from queued to processing.

        The conditional UPDATE only matches while the row is still queued, so
        of two concurrent callers exactly one sees a rowcount of 1. The claim
        is committed at once so a crash mid-call leaves the item visibly in
        ``processing`` until its lease expires.
        """
        now = datetime.utcnow()
        updated = self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.id == item.id,
            ProcessingQueueItem.status == QueueStatus.QUEUED.value
        ).update({
            ProcessingQueueItem.status: QueueStatus.PROCESSING.value,
            ProcessingQueueItem.started_at: now,
            ProcessingQueueItem.lease_expires_at: now + timedelta(seconds=self.lease_seconds),
            ProcessingQueueItem.attempts: ProcessingQueueItem.attempts + 1,
        }, synchronize_session=False)
        self.db.commit()

        if updated != 1:
            logger.info(f"Queue item {item.id} already claimed by another worker")
            return False

        self.db.refresh(item)
        logger.info(
            f"Claimed {item.processing_type} item {item.id} for document {item.document_id} "
            f"(attempt {item.attempts}/{self.max_attempts})"
        )
        return True

    def complete(self, item: ProcessingQueueItem, result: Optional[dict] = None) -> ProcessingQueueItem:
        item.status = QueueStatus.COMPLETED.value
        item.result = result
        item.error_message = None
        item.completed_at = datetime.utcnow()
        item.lease_expires_at = None
        self.db.flush()
        return item

    def retry_delay(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.retry_base_seconds * 2 ** max(attempts - 1, 0))

    def fail(self, item: ProcessingQueueItem, error: str, retryable: bool = True) -> bool:
        """
        Record a failed attempt.

        Returns True when the item is dead-lettered (``failed``), False when it
        was re-queued with exponential backoff.
        """
        now = datetime.utcnow()
        item.error_message = error
        item.lease_expires_at = None

        if retryable and item.attempts < self.max_attempts:
            delay = self.retry_delay(item.attempts)
            item.status = QueueStatus.QUEUED.value
            item.next_attempt_at = now + delay
            item.started_at = None
            self.db.flush()
            logger.warning(
                f"{item.processing_type} item {item.id} for document {item.document_id} failed "
                f"(attempt {item.attempts}/{self.max_attempts}), retrying in {int(delay.total_seconds())}s: {error}"
            )
            return False

        item.status = QueueStatus.FAILED.value
        item.completed_at = now
        self.db.flush()
        logger.error(
            f"{item.processing_type} item {item.id} for document {item.document_id} "
            f"dead-lettered after {item.attempts} attempt(s): {error}"
        )
        return True

    def pending_for_document(self, document_id: int) -> List[ProcessingQueueItem]:
        return self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.document_id == document_id,
            ProcessingQueueItem.status.in_(NON_TERMINAL_STATUSES)
        ).all()

    def items_for_document(self, document_id: int) -> List[ProcessingQueueItem]:
        return self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.document_id == document_id
        ).order_by(ProcessingQueueItem.priority).all()

    def outstanding_document_ids(self) -> List[int]:
        """Documents with queued work, oldest first"""
        rows = self.db.query(ProcessingQueueItem.document_id).filter(
            ProcessingQueueItem.status == QueueStatus.QUEUED.value
        ).distinct().order_by(ProcessingQueueItem.document_id).all()
        return [row[0] for row in rows]

    def list_items(
        self,
        owner_id: str,
        status: Optional[str] = None,
        document_id: Optional[int] = None
    ) -> List[ProcessingQueueItem]:
        query = self.db.query(ProcessingQueueItem).join(Document).filter(
            Document.owner_id == owner_id
        )
        if status:
            query = query.filter(ProcessingQueueItem.status == status)
        if document_id is not None:
            query = query.filter(ProcessingQueueItem.document_id == document_id)
        return query.order_by(
            ProcessingQueueItem.document_id.desc(),
            ProcessingQueueItem.priority
        ).all()

    def requeue_stuck(self, older_than: Optional[timedelta] = None, owner_id: Optional[str] = None) -> int:
        """
        Put ``processing`` items back on the queue.

        By default only items whose lease has expired are recovered; with
        ``older_than`` any item started before that age is recovered.
        """
        now = datetime.utcnow()
        query = self.db.query(ProcessingQueueItem).filter(
            ProcessingQueueItem.status == QueueStatus.PROCESSING.value
        )
        if older_than is not None:
            query = query.filter(ProcessingQueueItem.started_at <= now - older_than)
        else:
            query = query.filter(ProcessingQueueItem.lease_expires_at <= now)
        if owner_id is not None:
            query = query.filter(ProcessingQueueItem.document_id.in_(
                select(Document.id).where(Document.owner_id == owner_id)
            ))

        count = 0
        for item in query.all():
            item.status = QueueStatus.QUEUED.value
            item.lease_expires_at = None
            item.started_at = None
            item.next_attempt_at = None
            count += 1
            logger.warning(f"Re-queued stuck {item.processing_type} item {item.id} for document {item.document_id}")

        self.db.flush()
        return count
