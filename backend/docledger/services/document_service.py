"""
Document Service - Upload boundary, document records and the typed
extracted_data accumulator written by the pipeline stages
"""
from typing import Any, Dict, List, Optional, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from datetime import datetime
import logging

from docledger.core.config import settings
from docledger.core.exceptions import (
    UploadValidationError, NotFoundError, InvalidStateError
)
from docledger.models import BankAccount, Document, DocumentStatus
from docledger.services.queue_service import ProcessingQueueService
from docledger.services.storage_service import StorageGateway

logger = logging.getLogger(__name__)


ALLOWED_FILE_TYPES = {
    'image/jpeg',
    'image/jpg',
    'image/png',
    'image/gif',
    'image/webp',
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'text/plain',
    'text/csv',
}

# Forward-only lifecycle
ALLOWED_TRANSITIONS = {
    DocumentStatus.PROCESSING.value: {DocumentStatus.COMPLETED.value, DocumentStatus.FAILED.value},
}


# ==================== STAGE RESULTS ====================

class ConversionResult(BaseModel):
    converted_content: Dict[str, Any]
    conversion_timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())


class OcrResult(BaseModel):
    ocr_text: str


class ExtractionResult(BaseModel):
    structured_data: Dict[str, Any]
    extraction_confidence: float
    extraction_timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())


class CategorizationResult(BaseModel):
    document_type: str = "other"
    category: str = "uncategorized"
    tags: List[str] = []
    auto_filled_fields: Dict[str, Any] = {}
    insights: Dict[str, Any] = {}
    confidence: float = 0.5


class PostingMarker(BaseModel):
    posted: bool = True
    posted_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    posted_reference_id: int
    posted_reference_type: str


STAGE_RESULT_TYPES = (ConversionResult, OcrResult, ExtractionResult, CategorizationResult, PostingMarker)

# Every extracted_data key has exactly one writer
KEY_OWNERS: Dict[str, Type[BaseModel]] = {}
for _result_type in STAGE_RESULT_TYPES:
    for _key in _result_type.model_fields:
        if _key in KEY_OWNERS:
            raise RuntimeError(f"extracted_data key '{_key}' claimed by two stage results")
        KEY_OWNERS[_key] = _result_type


class DocumentState:
    """Read view over a document's extracted_data"""

    def __init__(self, data: Optional[Dict[str, Any]]):
        self.data = data or {}

    @property
    def converted_content(self) -> Optional[Dict[str, Any]]:
        value = self.data.get('converted_content')
        return value if isinstance(value, dict) and value else None

    @property
    def ocr_text(self) -> Optional[str]:
        return self.data.get('ocr_text') or None

    @property
    def structured_data(self) -> Dict[str, Any]:
        value = self.data.get('structured_data')
        return value if isinstance(value, dict) else {}

    @property
    def auto_filled_fields(self) -> Dict[str, Any]:
        value = self.data.get('auto_filled_fields')
        return value if isinstance(value, dict) else {}

    @property
    def document_type(self) -> Optional[str]:
        return self.data.get('document_type')

    @property
    def category(self) -> Optional[str]:
        return self.data.get('category')

    @property
    def is_categorized(self) -> bool:
        return 'document_type' in self.data

    @property
    def is_posted(self) -> bool:
        return bool(self.data.get('posted'))

    def lookup(self, *names: str) -> Any:
        """
        First non-empty value for any of ``names``, searching the top level,
        then the categorizer's auto-filled fields, then the extractor's
        structured data.
        """
        for source in (self.data, self.auto_filled_fields, self.structured_data):
            for name in names:
                value = source.get(name)
                if value not in (None, "", [], {}):
                    return value
        return None


class DocumentService:
    def __init__(self, db: Session, storage: Optional[StorageGateway] = None):
        self.db = db
        self.storage = storage or StorageGateway()

    def get_by_id(self, document_id: int, owner_id: str) -> Optional[Document]:
        return self.db.query(Document).filter(
            Document.id == document_id,
            Document.owner_id == owner_id
        ).first()

    def get_by_owner(self, owner_id: str, status: Optional[str] = None) -> List[Document]:
        query = self.db.query(Document).filter(Document.owner_id == owner_id)
        if status:
            query = query.filter(Document.status == status)
        return query.order_by(Document.created_at.desc(), Document.id.desc()).all()

    def validate_upload(self, file_name: str, content_type: Optional[str], size: int):
        """Reject uploads before anything is stored"""
        if not file_name:
            raise UploadValidationError("File name is required")
        if content_type not in ALLOWED_FILE_TYPES:
            raise UploadValidationError(
                f"File type '{content_type}' is not supported. "
                "Allowed: PDF, JPEG, PNG, GIF, WebP, Word, Excel, CSV and plain text"
            )
        if size <= 0:
            raise UploadValidationError("File is empty")
        if size > settings.max_upload_bytes:
            raise UploadValidationError(
                f"File is too large ({size / (1024 * 1024):.1f} MB). "
                f"Maximum size is {settings.MAX_UPLOAD_SIZE_MB} MB"
            )

    def upload(
        self,
        owner_id: str,
        file_name: str,
        content_type: Optional[str],
        data: bytes,
        bank_account_id: Optional[int] = None
    ) -> Document:
        """Store the file, create the document and enqueue every stage"""
        self.validate_upload(file_name, content_type, len(data))

        if bank_account_id is not None:
            bank_account = self.db.query(BankAccount).filter(
                BankAccount.id == bank_account_id,
                BankAccount.owner_id == owner_id
            ).first()
            if not bank_account:
                raise NotFoundError("Bank account not found")

        storage_path = self.storage.save(owner_id, file_name, data)
        try:
            document = Document(
                owner_id=owner_id,
                file_name=file_name,
                file_size=len(data),
                file_type=content_type,
                storage_path=storage_path,
                status=DocumentStatus.PROCESSING.value,
                extracted_data={},
                bank_account_id=bank_account_id
            )
            self.db.add(document)
            self.db.flush()

            ProcessingQueueService(self.db).enqueue_all_stages(document)
        except Exception:
            self.storage.delete(storage_path)
            raise

        logger.info(f"Document {document.id} uploaded by {owner_id}: {file_name} ({len(data)} bytes)")
        return document

    def delete(self, document_id: int, owner_id: str) -> bool:
        """Delete the record, its queue items and the stored file"""
        document = self.get_by_id(document_id, owner_id)
        if not document:
            return False

        storage_path = document.storage_path
        self.db.delete(document)
        self.db.flush()
        self.storage.delete(storage_path)

        logger.info(f"Document {document_id} deleted by {owner_id}")
        return True

    def signed_url(self, document: Document, expires_in: int = None) -> str:
        return self.storage.create_signed_url(document.storage_path, expires_in)

    @staticmethod
    def state(document: Document) -> DocumentState:
        return DocumentState(document.extracted_data)

    def merge_extracted_data(self, document: Document, result: BaseModel) -> Dict[str, Any]:
        """Additive merge of one stage result into extracted_data"""
        updates = result.model_dump(mode="json")
        for key in updates:
            owner = KEY_OWNERS.get(key)
            if owner is not type(result):
                raise ValueError(f"{type(result).__name__} may not write extracted_data key '{key}'")

        merged = dict(document.extracted_data or {})
        merged.update(updates)
        # Assign a new dict so the JSON column is flagged dirty
        document.extracted_data = merged
        self.db.flush()
        return merged

    def set_status(self, document: Document, new_status: str, error_message: Optional[str] = None) -> Document:
        allowed = ALLOWED_TRANSITIONS.get(document.status, set())
        if new_status not in allowed:
            raise InvalidStateError(
                f"Document {document.id} cannot move from '{document.status}' to '{new_status}'"
            )

        document.status = new_status
        if error_message is not None:
            document.error_message = error_message
        if document.processed_at is None:
            document.processed_at = datetime.utcnow()
        self.db.flush()

        logger.info(f"Document {document.id} is now {new_status}")
        return document

    def mark_posted(self, document: Document, reference_id: int, reference_type: str) -> Dict[str, Any]:
        return self.merge_extracted_data(
            document,
            PostingMarker(posted_reference_id=reference_id, posted_reference_type=reference_type)
        )
