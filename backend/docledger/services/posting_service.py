"""
Posting Service - turns processed documents into invoices and journal entries
"""
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timedelta
import logging

from docledger.core.exceptions import DataMissingError, InvalidStateError, NotFoundError
from docledger.models import Document, Invoice, InvoiceStatus, JournalEntry
from docledger.services.accounting_service import JournalEntryService
from docledger.services.crm_service import CustomerService
from docledger.services.document_service import DocumentService, DocumentState
from docledger.services.stage_service import parse_date
from docledger.services.storage_service import StorageGateway

logger = logging.getLogger(__name__)

SALES = "sales"
PURCHASE = "purchase"
EXPENSE = "expense"

SALES_HINTS = {"revenue", "income", "sales", "sales_invoice"}
PURCHASE_HINTS = {"purchase", "purchases", "purchase_order", "purchase_invoice", "bill", "inventory"}
EXPENSE_HINTS = {"expense", "expenses", "receipt", "utility_bill"}


def to_amount(value: Any) -> Decimal:
    """Parse a money value; missing or invalid values become 0"""
    if value is None or isinstance(value, bool):
        return Decimal("0.00")
    try:
        text = str(value).replace(",", "").replace("$", "").strip()
        amount = Decimal(text) if text else Decimal("0.00")
    except InvalidOperation:
        return Decimal("0.00")
    if not amount.is_finite():
        return Decimal("0.00")
    return amount.quantize(Decimal("0.01"))


def infer_posting_kind(state: DocumentState) -> str:
    document_type = (state.document_type or "").lower()
    category = (state.category or "").lower()

    for kind, hints in ((SALES, SALES_HINTS), (PURCHASE, PURCHASE_HINTS), (EXPENSE, EXPENSE_HINTS)):
        if category in hints:
            return kind
    for kind, hints in ((SALES, SALES_HINTS), (PURCHASE, PURCHASE_HINTS), (EXPENSE, EXPENSE_HINTS)):
        if document_type in hints:
            return kind

    raise DataMissingError(
        "Cannot tell how to post this document; choose sales, purchase or expense"
    )


class PostingService:
    def __init__(self, db: Session, storage: Optional[StorageGateway] = None):
        self.db = db
        self.documents = DocumentService(db, storage)
        self.customers = CustomerService(db)
        self.journal = JournalEntryService(db)

    def _load(self, document_id: int, owner_id: str) -> Document:
        document = self.documents.get_by_id(document_id, owner_id)
        if not document:
            raise NotFoundError("Document not found")
        return document

    def _check_postable(self, document: Document) -> DocumentState:
        if not document.extracted_data:
            raise DataMissingError("Document has no extracted data to post")
        state = DocumentState(document.extracted_data)
        if state.is_posted:
            raise InvalidStateError(
                f"Document already posted as {state.data.get('posted_reference_type')} "
                f"{state.data.get('posted_reference_id')}"
            )
        return state

    def post_document(self, document_id: int, owner_id: str, kind: Optional[str] = None) -> Dict[str, Any]:
        """Post a document, inferring the kind from its categorization when not given"""
        document = self._load(document_id, owner_id)
        state = self._check_postable(document)
        kind = kind or infer_posting_kind(state)

        if kind == SALES:
            return self.post_sales_document(document)
        if kind == PURCHASE:
            return self.post_purchase_document(document)
        if kind == EXPENSE:
            return self.post_expense_document(document)
        raise DataMissingError(f"Unknown posting kind '{kind}'")

    def post_sales_document(self, document: Document) -> Dict[str, Any]:
        """Create a draft invoice (and customer if needed) from a sales document"""
        state = self._check_postable(document)

        customer_name = state.lookup("customer_name", "client_name", "bill_to", "buyer_name") or "Unknown Customer"

        subtotal = to_amount(state.lookup("subtotal"))
        tax_amount = to_amount(state.lookup("tax_amount"))
        total = to_amount(state.lookup("total_amount", "total"))
        if total == 0 and subtotal:
            total = subtotal + tax_amount
        if subtotal == 0 and total:
            subtotal = total - tax_amount

        today = date.today()
        invoice_date = parse_date(state.lookup("date", "invoice_date")) or today
        due_date = parse_date(state.lookup("due_date")) or today + timedelta(days=30)
        number = state.lookup("invoice_number") or f"INV-{int(datetime.utcnow().timestamp() * 1000)}"

        with self.db.begin_nested():
            customer = self.customers.find_or_create_placeholder(str(customer_name), document.owner_id)
            invoice = Invoice(
                owner_id=document.owner_id,
                invoice_number=str(number),
                customer_id=customer.id,
                source_document_id=document.id,
                invoice_type="standard",
                invoice_date=invoice_date,
                due_date=due_date,
                subtotal=subtotal,
                tax_amount=tax_amount,
                total_amount=total,
                status=InvoiceStatus.DRAFT.value,
                notes=f"Generated from document: {document.file_name}"
            )
            self.db.add(invoice)
            self.db.flush()
            self.documents.mark_posted(document, invoice.id, "invoice")

        logger.info(f"Posted document {document.id} as invoice {invoice.invoice_number} ({total})")
        return {
            "document_id": document.id,
            "reference_id": invoice.id,
            "reference_type": "invoice",
            "number": invoice.invoice_number,
        }

    def _post_summary_entry(self, document: Document, prefix: str, kind: str) -> Dict[str, Any]:
        state = self._check_postable(document)

        total = to_amount(state.lookup("total_amount", "total", "amount"))
        if total <= 0:
            raise DataMissingError("Document has no total amount to post")

        counterparty = state.lookup("vendor_name", "merchant_name", "supplier_name") or "Unknown vendor"
        category = state.category or kind
        entry_date = parse_date(state.lookup("date", "transaction_date", "invoice_date")) or date.today()
        label = "Purchase" if kind == PURCHASE else "Expense"

        with self.db.begin_nested():
            entry: JournalEntry = self.journal.create_posted_summary(
                owner_id=document.owner_id,
                prefix=prefix,
                entry_date=entry_date,
                description=f"{label}: {counterparty} - {category}",
                amount=total,
                posted_by=document.owner_id,
                reference_type=kind,
                reference_id=str(document.id)
            )
            self.documents.mark_posted(document, entry.id, "journal_entry")

        logger.info(f"Posted document {document.id} as {kind} entry {entry.entry_number} ({total})")
        return {
            "document_id": document.id,
            "reference_id": entry.id,
            "reference_type": "journal_entry",
            "number": entry.entry_number,
        }

    def post_purchase_document(self, document: Document) -> Dict[str, Any]:
        return self._post_summary_entry(document, "PUR", PURCHASE)

    def post_expense_document(self, document: Document) -> Dict[str, Any]:
        return self._post_summary_entry(document, "EXP", EXPENSE)
