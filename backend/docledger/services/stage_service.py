"""
Stage Processors - conversion, OCR, extraction and categorization of
uploaded documents, plus bank transaction generation from statements
"""
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from pydantic import BaseModel
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
import csv
import json
import logging

import pdfplumber
from dateutil import parser as date_parser

from docledger.core.exceptions import InferenceError, StageError
from docledger.models import (
    BankTransaction, BankTransactionStatus, Document, DocumentStatus,
    ProcessingQueueItem, ProcessingType, TransactionType
)
from docledger.services.document_service import (
    CategorizationResult, ConversionResult, DocumentService, DocumentState,
    ExtractionResult, OcrResult
)
from docledger.services.inference_service import InferenceClient, parse_json_reply
from docledger.services.queue_service import ProcessingQueueService
from docledger.services.storage_service import StorageGateway

logger = logging.getLogger(__name__)

MAX_ANALYSIS_CHARS = 8000
MAX_TABLE_ROWS = 5


# ==================== CONTENT HELPERS ====================

def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Text layer of a PDF, pages joined by newlines"""
    if not pdf_bytes:
        return ""

    text_parts = []
    with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
        for page in pdf.pages:
            page_text = (page.extract_text() or "").replace("\u00a0", " ")
            if page_text:
                text_parts.append(page_text)

    return "\n".join(text_parts).strip()


def _build_converted_content(text: str, file_type: str, method: str, tables: Optional[List[Dict]] = None) -> Dict[str, Any]:
    structured: Dict[str, Any] = {"text_blocks": [{"type": "paragraph", "content": text}]}
    if tables:
        structured["tables"] = tables
    return {
        "content": text,
        "metadata": {
            "file_type": file_type,
            "extraction_method": method,
            "extracted_at": datetime.utcnow().isoformat(),
        },
        "structured_data": structured,
    }


def flatten_converted_content(converted: Dict[str, Any]) -> str:
    """Plain text of converted content: body, text blocks, then tables"""
    parts = []
    if converted.get("content"):
        parts.append(str(converted["content"]))

    structured = converted.get("structured_data") or {}
    blocks = structured.get("text_blocks") or []
    for block in blocks:
        block_text = block.get("content") if isinstance(block, dict) else None
        if block_text and block_text not in parts:
            parts.append(str(block_text))

    for table in structured.get("tables") or []:
        lines = [f"{table.get('title') or 'Table'}:"]
        if table.get("headers"):
            lines.append(" | ".join(str(h) for h in table["headers"]))
        for row in table.get("rows") or []:
            lines.append(" | ".join(str(cell) for cell in row))
        parts.append("\n".join(lines))

    return "\n\n".join(parts).strip()


def prepare_content_for_analysis(converted: Dict[str, Any]) -> str:
    """Converted content as model input, with tables cut to their first rows"""
    text = str(converted.get("content") or "")
    structured = converted.get("structured_data") or {}

    tables = structured.get("tables") or []
    if tables:
        text += "\n\nTABLES:\n"
        for index, table in enumerate(tables, start=1):
            rows = table.get("rows") or []
            text += f"\nTable {index}: {table.get('title') or 'Untitled'}\n"
            text += f"Headers: {' | '.join(str(h) for h in table.get('headers') or [])}\n"
            for row in rows[:MAX_TABLE_ROWS]:
                text += " | ".join(str(cell) for cell in row) + "\n"
            if len(rows) > MAX_TABLE_ROWS:
                text += f"... and {len(rows) - MAX_TABLE_ROWS} more rows\n"

    blocks = structured.get("text_blocks") or []
    if blocks:
        text += "\n\nTEXT BLOCKS:\n"
        for index, block in enumerate(blocks, start=1):
            text += f"\n{str(block.get('type', 'block')).upper()} {index}:\n{block.get('content', '')}\n"

    return text[:MAX_ANALYSIS_CHARS]


def build_extraction_prompt(file_type: str) -> str:
    base = (
        "You are a financial document data extraction expert. "
        "Extract key information and return it as a JSON object."
    )
    file_type = (file_type or "").lower()

    if "pdf" in file_type or "image" in file_type:
        return f"""{base}

For invoices/receipts, extract:
- vendor_name, merchant_name, supplier_name, customer_name
- invoice_number, receipt_number, transaction_id
- date, due_date, transaction_date
- total_amount, subtotal, tax_amount
- currency
- line_items (array of {{description, quantity, unit_price, total}})
- payment_method
- billing_address, shipping_address

For bank statements, extract:
- account_number, account_holder
- statement_period (start_date, end_date)
- opening_balance, closing_balance
- transactions (array of {{date, description, amount, type, balance}})

For receipts/expenses, extract:
- merchant_name, vendor_name
- date, time
- total_amount, tax_amount
- category (food, travel, office, utilities, etc.)
- payment_method
- location, address

Return only valid JSON without markdown formatting."""

    if "csv" in file_type or "excel" in file_type or "spreadsheet" in file_type:
        return f"""{base}

For spreadsheet/CSV data, extract:
- data_type (financial_records, transactions, inventory, etc.)
- total_rows, total_columns
- date_range (if applicable)
- key_metrics (totals, averages, counts)
- column_headers
- sample_data (first few rows)
- summary_statistics
- transactions (array of {{date, description, amount, type}}) for bank exports

If it's financial data, also extract:
- currency
- total_amount, total_income, total_expenses
- categories present

Return only valid JSON without markdown formatting."""

    return f"""{base}

Extract relevant information based on the document type:
- document_type
- key_fields (important data found)
- summary
- dates mentioned
- amounts/numbers
- names/entities
- categories

Return only valid JSON without markdown formatting."""


IMPORTANT_FIELDS = ['total_amount', 'vendor_name', 'merchant_name', 'date', 'invoice_number']


def extraction_confidence(data: Any, file_type: Optional[str] = None) -> float:
    """Completeness score of extracted data, 0.1 to 1.0"""
    if not isinstance(data, dict) or not data:
        return 0.1

    score = 0.3
    file_type = (file_type or "").lower()

    if "csv" in file_type or "excel" in file_type:
        if data.get("column_headers") and data.get("total_rows"):
            score += 0.4
        if data.get("key_metrics"):
            score += 0.2
        if data.get("summary_statistics"):
            score += 0.1
    else:
        found = [f for f in IMPORTANT_FIELDS if data.get(f) or data.get(f.replace("_", "", 1))]
        score += len(found) / len(IMPORTANT_FIELDS) * 0.4

        if data.get("line_items") or data.get("transactions"):
            score += 0.2
        if data.get("billing_address") or data.get("shipping_address") or data.get("location"):
            score += 0.1

    return round(min(score, 1.0), 4)


# ==================== STAGES ====================

class BaseStage:
    """
    Shared claim / run / record loop.

    Subclasses implement ``process`` returning the typed result to merge (or
    None) and the raw payload stored on the queue item.
    """
    processing_type: str = None
    upstream: Tuple[str, ...] = ()

    def __init__(
        self,
        db: Session,
        inference: Optional[InferenceClient] = None,
        storage: Optional[StorageGateway] = None,
        queue: Optional[ProcessingQueueService] = None,
    ):
        self.db = db
        self.inference = inference or InferenceClient()
        self.storage = storage or StorageGateway()
        self.queue = queue or ProcessingQueueService(db)
        self.documents = DocumentService(db, self.storage)

    def process(self, document: Document, item: ProcessingQueueItem) -> Tuple[Optional[BaseModel], Dict[str, Any]]:
        raise NotImplementedError

    def on_dead_letter(self, document: Document, error: str):
        pass

    def _upstream_pending(self, document_id: int) -> bool:
        if not self.upstream:
            return False
        return any(
            item.processing_type in self.upstream
            for item in self.queue.pending_for_document(document_id)
        )

    def run(self, document_id: Optional[int] = None, force: bool = False) -> Dict[str, Any]:
        """
        Process one claimable item of this stage.

        Returns ``{processed, errors, deferred}``; finding no work is not an
        error. ``force`` ignores retry backoff.
        """
        summary = {"processed": 0, "errors": [], "deferred": 0}

        for candidate in self.queue.next_candidates(self.processing_type, document_id, due_only=not force):
            if self._upstream_pending(candidate.document_id):
                summary["deferred"] += 1
                continue
            if not self.queue.claim(candidate):
                continue

            error = self._execute(candidate)
            if error:
                summary["errors"].append(error)
            else:
                summary["processed"] += 1
            break

        return summary

    def _execute(self, item: ProcessingQueueItem) -> Optional[Dict[str, Any]]:
        document = item.document
        logger.info(f"Running {self.processing_type} for document {document.id}")

        try:
            stage_result, raw = self.process(document, item)
            if stage_result is not None:
                self.documents.merge_extracted_data(document, stage_result)
            self.after_success(document)
            self.queue.complete(item, raw)
            self.db.commit()
            logger.info(f"{self.processing_type} completed for document {document.id}")
            return None
        except (StageError, InferenceError) as e:
            retryable = getattr(e, "retryable", True)
            message = e.message
        except Exception as e:
            logger.exception(f"Unexpected {self.processing_type} error for document {document.id}")
            retryable = True
            message = str(e) or e.__class__.__name__

        self.db.rollback()
        dead = self.queue.fail(item, message, retryable)
        if dead:
            self.on_dead_letter(document, message)
        self.db.commit()

        return {
            "document_id": document.id,
            "error": message,
            "retryable": retryable,
            "dead_lettered": dead,
        }

    def after_success(self, document: Document):
        pass


class ConversionStage(BaseStage):
    processing_type = ProcessingType.CONVERSION.value

    PDF_SYSTEM_PROMPT = (
        "You are a document processing assistant. Extract and structure all text content "
        "from the provided document. Preserve formatting and structure where possible. "
        "Return the content in a structured format."
    )
    IMAGE_SYSTEM_PROMPT = (
        "You are an OCR specialist. Extract all text content from images with high accuracy. "
        "Preserve formatting, structure, and any tabular data. Return the content in a structured format."
    )

    def process(self, document, item):
        state = DocumentState(document.extracted_data)
        if state.converted_content:
            logger.info(f"Document {document.id} already converted, using cached content")
            return None, {"cached": True, "converted_content": state.converted_content}

        file_type = (document.file_type or "").lower()

        if file_type == "application/pdf":
            text = extract_pdf_text(self.storage.read(document.storage_path))
            if not text:
                raise StageError("PDF has no extractable text layer", retryable=False)
            reply = self.inference.complete(
                self.PDF_SYSTEM_PROMPT,
                "Please process this PDF document and extract all text content. Return it in a "
                f"structured format that preserves the document's organization.\n\n{text}",
                max_tokens=4000,
            )
            converted = _build_converted_content(reply or text, file_type, "pdf_text_layer")
        elif file_type.startswith("image/"):
            reply = self.inference.complete(
                self.IMAGE_SYSTEM_PROMPT,
                "Extract all text from this image.",
                image_url=self.storage.create_signed_url(document.storage_path),
                max_tokens=4000,
            )
            converted = _build_converted_content(reply, file_type, "vision_ocr")
        elif file_type in ("text/plain", "text/csv"):
            text = self.storage.read(document.storage_path).decode("utf-8", errors="replace")
            tables = None
            if file_type == "text/csv":
                rows = [row for row in csv.reader(StringIO(text)) if row]
                if rows:
                    tables = [{"title": document.file_name, "headers": rows[0], "rows": rows[1:]}]
            converted = _build_converted_content(text, file_type, "direct_decode", tables)
        else:
            raise StageError(f"Conversion of '{document.file_type}' files is not supported", retryable=False)

        result = ConversionResult(converted_content=converted)
        return result, {"cached": False, "converted_content": converted}

    def on_dead_letter(self, document, error):
        if document.status == DocumentStatus.PROCESSING.value:
            self.documents.set_status(document, DocumentStatus.FAILED.value, f"Conversion failed: {error}")


class OcrStage(BaseStage):
    processing_type = ProcessingType.OCR.value
    upstream = (ProcessingType.CONVERSION.value,)

    SYSTEM_PROMPT = (
        "You are an OCR expert. Extract all text from the image accurately, maintaining formatting "
        "where possible. Return only the extracted text without any additional commentary."
    )

    def process(self, document, item):
        state = DocumentState(document.extracted_data)

        if state.converted_content:
            text = flatten_converted_content(state.converted_content)
            method = "converted_content"
        elif (document.file_type or "").startswith("image/"):
            logger.warning(f"No converted content for document {document.id}, falling back to vision OCR")
            text = self.inference.complete(
                self.SYSTEM_PROMPT,
                "Extract all text from this image.",
                image_url=self.storage.create_signed_url(document.storage_path),
                max_tokens=4000,
            )
            method = "vision_fallback"
        else:
            raise StageError("No converted content available for OCR", retryable=False)

        return OcrResult(ocr_text=text), {"ocr_method": method, "text_length": len(text)}


class ExtractionStage(BaseStage):
    processing_type = ProcessingType.EXTRACTION.value
    upstream = (ProcessingType.CONVERSION.value, ProcessingType.OCR.value)

    def process(self, document, item):
        state = DocumentState(document.extracted_data)

        if state.converted_content:
            analysis = prepare_content_for_analysis(state.converted_content)
        elif state.ocr_text:
            analysis = state.ocr_text[:MAX_ANALYSIS_CHARS]
        else:
            raise StageError("No converted content or OCR text to extract from", retryable=False)

        reply = self.inference.complete(
            build_extraction_prompt(document.file_type),
            "Extract structured data from this document:\n\n"
            f"File: {document.file_name}\nType: {document.file_type}\n\nContent:\n{analysis}",
            max_tokens=2000,
        )

        parsed = parse_json_reply(reply)
        if isinstance(parsed, dict):
            structured = parsed
        else:
            logger.warning(f"Extraction reply for document {document.id} is not a JSON object, keeping raw text")
            structured = {"raw_extraction": reply, "extraction_method": "ai_text_analysis"}

        result = ExtractionResult(
            structured_data=structured,
            extraction_confidence=extraction_confidence(structured, document.file_type),
        )
        return result, {"structured_data": structured, "confidence": result.extraction_confidence}


class CategorizationStage(BaseStage):
    processing_type = ProcessingType.CATEGORIZATION.value
    upstream = (ProcessingType.CONVERSION.value, ProcessingType.OCR.value, ProcessingType.EXTRACTION.value)

    SYSTEM_PROMPT = """You are a financial document categorization expert. Analyze the document and provide:

1. Document type classification (invoice, receipt, bank_statement, utility_bill, tax_document, contract, etc.)
2. Document category (expense, revenue, purchase, asset, liability, etc.)
3. Suggested tags for organization
4. Auto-filled fields for common form fields
5. Financial insights and recommendations

Return a JSON object with this structure:
{
  "document_type": "string",
  "category": "string",
  "tags": ["tag1", "tag2"],
  "auto_filled_fields": {
    "field_name": "value"
  },
  "insights": {
    "summary": "brief summary",
    "recommendations": ["recommendation1", "recommendation2"],
    "flags": ["warning1", "warning2"]
  },
  "confidence": 0.95
}"""

    def process(self, document, item):
        state = DocumentState(document.extracted_data)

        reply = self.inference.complete(
            self.SYSTEM_PROMPT,
            "Analyze this financial document:\n\n"
            f"OCR Text: {state.ocr_text or ''}\n\n"
            f"Structured Data: {json.dumps(state.structured_data, indent=2, default=str)}\n\n"
            f"File Name: {document.file_name}",
            max_tokens=1500,
        )

        parsed = parse_json_reply(reply)
        if isinstance(parsed, dict):
            result = self._coerce(parsed)
        else:
            logger.warning(f"Categorization reply for document {document.id} is not JSON, using fallback")
            result = CategorizationResult(insights={"summary": reply or ""})

        return result, result.model_dump(mode="json")

    @staticmethod
    def _coerce(parsed: Dict[str, Any]) -> CategorizationResult:
        tags = parsed.get("tags")
        fields = parsed.get("auto_filled_fields")
        insights = parsed.get("insights")
        try:
            confidence = min(max(float(parsed.get("confidence", 0.5)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.5

        return CategorizationResult(
            document_type=str(parsed.get("document_type") or "other"),
            category=str(parsed.get("category") or "uncategorized"),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            auto_filled_fields=fields if isinstance(fields, dict) else {},
            insights=insights if isinstance(insights, dict) else {"summary": str(insights or "")},
            confidence=confidence,
        )

    def after_success(self, document):
        document.processed_at = datetime.utcnow()


# ==================== TRANSACTION GENERATION ====================

def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date_parser.parse(str(value).strip()).date()
    except (ValueError, TypeError, OverflowError):
        return None


def parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).replace(",", "").replace("$", "").strip())
    except InvalidOperation:
        return None


class TransactionGenerator:
    """Turns a categorized bank statement into uncategorized bank transactions"""

    def __init__(self, db: Session):
        self.db = db

    def run(self, document: Document) -> int:
        state = DocumentState(document.extracted_data)
        if state.document_type != "bank_statement" or not document.bank_account_id:
            return 0

        already = self.db.query(BankTransaction.id).filter(
            BankTransaction.source_document_id == document.id
        ).first()
        if already:
            return 0

        rows = state.structured_data.get("transactions")
        if not isinstance(rows, list):
            return 0

        confidence = state.data.get("confidence")
        created = 0
        for row in rows:
            if not isinstance(row, dict):
                continue
            amount = parse_amount(row.get("amount"))
            txn_date = parse_date(row.get("date")) or (document.created_at.date() if document.created_at else None)
            if amount is None or amount == 0 or txn_date is None:
                logger.warning(f"Skipping unparseable statement row in document {document.id}: {row}")
                continue

            row_type = str(row.get("type") or "").lower()
            if row_type not in (TransactionType.CREDIT.value, TransactionType.DEBIT.value):
                row_type = TransactionType.DEBIT.value if amount < 0 else TransactionType.CREDIT.value

            self.db.add(BankTransaction(
                owner_id=document.owner_id,
                bank_account_id=document.bank_account_id,
                source_document_id=document.id,
                transaction_date=txn_date,
                description=row.get("description"),
                amount=abs(amount),
                transaction_type=row_type,
                category=None,
                status=BankTransactionStatus.UNCATEGORIZED.value,
                ai_suggested_category=row.get("category"),
                ai_category_confidence=Decimal(str(confidence)) if confidence is not None else None,
            ))
            created += 1

        self.db.flush()
        logger.info(f"Generated {created} bank transactions from document {document.id}")
        return created
