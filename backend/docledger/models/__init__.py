"""
SQLAlchemy Models for DocLedger
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, UniqueConstraint, JSON
)
from sqlalchemy.orm import relationship
import enum

from docledger.core.database import Base


# ==================== ENUMS ====================

class AccountType(enum.Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


# Debit-normal account types; the rest are credit-normal
DEBIT_NORMAL_TYPES = {AccountType.ASSET.value, AccountType.EXPENSE.value}


class DocumentStatus(enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingType(enum.Enum):
    CONVERSION = "conversion"
    OCR = "ocr"
    EXTRACTION = "extraction"
    CATEGORIZATION = "categorization"


class QueueStatus(enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JournalEntryStatus(enum.Enum):
    DRAFT = "draft"
    POSTED = "posted"
    CANCELLED = "cancelled"


class TransactionType(enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BankTransactionStatus(enum.Enum):
    PENDING = "pending"
    UNCATEGORIZED = "uncategorized"
    CATEGORIZED = "categorized"
    POSTED = "posted"


class InvoiceStatus(enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class QuotationStatus(enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CONVERTED = "converted"


# ==================== DOCUMENT PIPELINE ====================

class Document(Base):
    """Uploaded file threaded through the processing stages"""
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(255), nullable=False)
    storage_path = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=DocumentStatus.PROCESSING.value)
    extracted_data = Column(JSON, nullable=False, default=dict)
    processing_summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    # Relationships
    queue_items = relationship("ProcessingQueueItem", back_populates="document", cascade="all, delete-orphan")
    bank_account = relationship("BankAccount")

    @property
    def is_posted(self) -> bool:
        return bool((self.extracted_data or {}).get("posted"))

    __table_args__ = (
        Index('ix_documents_owner_id', 'owner_id'),
        Index('ix_documents_status', 'status'),
    )


class ProcessingQueueItem(Base):
    """One unit of stage work for one document"""
    __tablename__ = 'ai_processing_queue'

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey('documents.id', ondelete='CASCADE'), nullable=False)
    processing_type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=QueueStatus.QUEUED.value)
    priority = Column(Integer, nullable=False, default=5)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    document = relationship("Document", back_populates="queue_items")

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatus.COMPLETED.value, QueueStatus.FAILED.value)

    __table_args__ = (
        UniqueConstraint('document_id', 'processing_type', name='uq_queue_document_stage'),
        Index('ix_queue_type_status_priority', 'processing_type', 'status', 'priority', 'created_at'),
    )


# ==================== ACCOUNTING MODELS ====================

class ChartOfAccount(Base):
    """Chart of Accounts with a running balance (debit minus credit)"""
    __tablename__ = 'chart_of_accounts'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    account_name = Column(String(255), nullable=False)
    account_type = Column(String(20), nullable=False)
    account_subtype = Column(String(100), nullable=True)
    parent_account_id = Column(Integer, ForeignKey('chart_of_accounts.id', ondelete='SET NULL'), nullable=True)
    opening_balance = Column(Numeric(15, 2), default=Decimal("0.00"))
    current_balance = Column(Numeric(15, 2), default=Decimal("0.00"))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent = relationship("ChartOfAccount", remote_side=[id], backref="children")

    @property
    def is_debit_normal(self) -> bool:
        return (self.account_type or '').lower() in DEBIT_NORMAL_TYPES

    __table_args__ = (
        UniqueConstraint('owner_id', 'account_name', name='uq_chart_of_accounts_name'),
        Index('ix_chart_of_accounts_owner_id', 'owner_id'),
    )


class JournalEntry(Base):
    """Journal entry header"""
    __tablename__ = 'journal_entries'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    entry_number = Column(String(50), nullable=False, unique=True)
    entry_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(100), nullable=True)
    total_debit = Column(Numeric(15, 2), default=Decimal("0.00"))
    total_credit = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=JournalEntryStatus.DRAFT.value)
    posted_at = Column(DateTime, nullable=True)
    posted_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    lines = relationship(
        "JournalEntryLine", back_populates="journal_entry",
        cascade="all, delete-orphan", order_by="JournalEntryLine.line_order"
    )
    day_book_entries = relationship("DayBookEntry", back_populates="journal_entry")

    __table_args__ = (
        Index('ix_journal_entries_owner_date', 'owner_id', 'entry_date'),
    )


class JournalEntryLine(Base):
    """Single debit or credit line of a journal entry"""
    __tablename__ = 'journal_entry_lines'

    id = Column(Integer, primary_key=True)
    journal_entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='CASCADE'), nullable=False)
    account_id = Column(Integer, ForeignKey('chart_of_accounts.id'), nullable=False)
    account_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    debit_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    credit_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    line_order = Column(Integer, nullable=False, default=1)

    # Relationships
    journal_entry = relationship("JournalEntry", back_populates="lines")
    account = relationship("ChartOfAccount")


class DayBookEntry(Base):
    """Append-only mirror of posted journal lines"""
    __tablename__ = 'day_book_entries'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    journal_entry_id = Column(Integer, ForeignKey('journal_entries.id'), nullable=False)
    entry_date = Column(Date, nullable=False)
    account_id = Column(Integer, ForeignKey('chart_of_accounts.id'), nullable=False)
    account_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    debit_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    credit_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    reference_number = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    journal_entry = relationship("JournalEntry", back_populates="day_book_entries")

    __table_args__ = (
        Index('ix_day_book_entries_owner_date', 'owner_id', 'entry_date'),
    )


class EntryNumberSequence(Base):
    """Per-day counter backing journal entry numbers"""
    __tablename__ = 'entry_number_sequences'

    prefix = Column(String(10), primary_key=True)
    sequence_date = Column(Date, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


# ==================== BANKING MODELS ====================

class BankAccount(Base):
    """Bank account linked to a ledger account"""
    __tablename__ = 'bank_accounts'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    account_name = Column(String(255), nullable=False)
    bank_name = Column(String(255), nullable=True)
    account_number = Column(String(50), nullable=True)
    chart_account_id = Column(Integer, ForeignKey('chart_of_accounts.id', ondelete='SET NULL'), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    chart_account = relationship("ChartOfAccount")
    transactions = relationship("BankTransaction", back_populates="bank_account", cascade="all, delete-orphan")


class BankTransaction(Base):
    """Imported bank statement line"""
    __tablename__ = 'bank_transactions'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id', ondelete='CASCADE'), nullable=False)
    source_document_id = Column(Integer, ForeignKey('documents.id', ondelete='SET NULL'), nullable=True)
    transaction_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    transaction_type = Column(String(10), nullable=False)
    category = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=BankTransactionStatus.UNCATEGORIZED.value)
    ai_suggested_category = Column(String(255), nullable=True)
    ai_category_confidence = Column(Numeric(4, 3), nullable=True)
    is_reviewed = Column(Boolean, default=False)
    journal_entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    bank_account = relationship("BankAccount", back_populates="transactions")
    journal_entry = relationship("JournalEntry")

    __table_args__ = (
        Index('ix_bank_transactions_owner_status', 'owner_id', 'status'),
        Index('ix_bank_transactions_source_document', 'source_document_id'),
    )


# ==================== SALES MODELS ====================

class Customer(Base):
    """Customer"""
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    legal_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    state = Column(String(100), nullable=True)
    place = Column(String(100), nullable=True)
    pincode = Column(String(20), nullable=True)
    tax_id = Column(String(50), nullable=True)
    is_placeholder = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    invoices = relationship("Invoice", back_populates="customer")
    quotations = relationship("Quotation", back_populates="customer")

    __table_args__ = (
        Index('ix_customers_owner_id', 'owner_id'),
    )


class Invoice(Base):
    """Sales invoice"""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    invoice_number = Column(String(100), nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id', ondelete='SET NULL'), nullable=True)
    source_document_id = Column(Integer, ForeignKey('documents.id', ondelete='SET NULL'), nullable=True)
    invoice_type = Column(String(30), default="standard")
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value)
    notes = Column(Text, nullable=True)
    terms_conditions = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="invoices")
    quotation = relationship("Quotation")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_invoices_owner_id', 'owner_id'),
    )


class InvoiceItem(Base):
    """Sales invoice line item"""
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 2), default=Decimal("1.00"))
    unit_price = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))

    # Relationships
    invoice = relationship("Invoice", back_populates="items")


class Quotation(Base):
    """Sales quotation; converts one time into an invoice"""
    __tablename__ = 'quotations'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    quotation_number = Column(String(100), nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    quotation_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=True)
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    tax_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=QuotationStatus.DRAFT.value)
    notes = Column(Text, nullable=True)
    converted_invoice_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="quotations")
    items = relationship("QuotationItem", back_populates="quotation", cascade="all, delete-orphan")


class QuotationItem(Base):
    """Quotation line item"""
    __tablename__ = 'quotation_items'

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 2), default=Decimal("1.00"))
    unit_price = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))

    # Relationships
    quotation = relationship("Quotation", back_populates="items")
