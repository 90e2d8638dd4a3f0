"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class AccountTypeEnum(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


class TransactionTypeEnum(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class PostingKindEnum(str, Enum):
    SALES = "sales"
    PURCHASE = "purchase"
    EXPENSE = "expense"


# ==================== DOCUMENT SCHEMAS ====================

class DocumentResponse(BaseModel):
    id: int
    owner_id: str
    file_name: str
    file_size: int
    file_type: str
    storage_path: str
    status: str
    extracted_data: Dict[str, Any] = {}
    processing_summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    bank_account_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DocumentWithUrl(DocumentResponse):
    signed_url: Optional[str] = None


class QueueItemResponse(BaseModel):
    id: int
    document_id: int
    processing_type: str
    status: str
    priority: int
    attempts: int
    next_attempt_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PostDocumentRequest(BaseModel):
    kind: Optional[PostingKindEnum] = None


class PostingResult(BaseModel):
    document_id: int
    reference_id: int
    reference_type: str
    number: Optional[str] = None


class RequeueStuckRequest(BaseModel):
    older_than_seconds: Optional[int] = Field(None, ge=0)


# ==================== CHART OF ACCOUNTS SCHEMAS ====================

class AccountBase(BaseModel):
    account_name: str = Field(..., min_length=1, max_length=255)
    account_type: AccountTypeEnum
    account_subtype: Optional[str] = None
    parent_account_id: Optional[int] = None


class AccountCreate(AccountBase):
    opening_balance: Decimal = Decimal("0")


class AccountUpdate(BaseModel):
    account_name: Optional[str] = Field(None, min_length=1, max_length=255)
    account_subtype: Optional[str] = None
    is_active: Optional[bool] = None
    opening_balance: Optional[Decimal] = None


class AccountResponse(BaseModel):
    id: int
    account_name: str
    account_type: str
    account_subtype: Optional[str] = None
    parent_account_id: Optional[int] = None
    opening_balance: Decimal
    current_balance: Decimal
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== JOURNAL ENTRY SCHEMAS ====================

class JournalEntryLineCreate(BaseModel):
    account_id: int
    description: Optional[str] = None
    debit_amount: Decimal = Field(Decimal("0"), ge=0)
    credit_amount: Decimal = Field(Decimal("0"), ge=0)


class JournalEntryCreate(BaseModel):
    entry_date: date
    description: str = ""
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    lines: List[JournalEntryLineCreate] = []


class JournalEntryLineResponse(BaseModel):
    id: int
    account_id: int
    account_name: Optional[str] = None
    description: Optional[str] = None
    debit_amount: Decimal
    credit_amount: Decimal
    line_order: int

    model_config = ConfigDict(from_attributes=True)


class JournalEntryResponse(BaseModel):
    id: int
    entry_number: str
    entry_date: date
    description: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    total_debit: Decimal
    total_credit: Decimal
    status: str
    posted_at: Optional[datetime] = None
    posted_by: Optional[str] = None
    created_at: datetime
    lines: List[JournalEntryLineResponse] = []

    model_config = ConfigDict(from_attributes=True)


class DayBookEntryResponse(BaseModel):
    id: int
    journal_entry_id: int
    entry_date: date
    account_id: int
    account_name: Optional[str] = None
    description: Optional[str] = None
    debit_amount: Decimal
    credit_amount: Decimal
    reference_number: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== BANKING SCHEMAS ====================

class BankAccountCreate(BaseModel):
    account_name: str = Field(..., min_length=1, max_length=255)
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    chart_account_id: Optional[int] = None


class BankAccountResponse(BaseModel):
    id: int
    account_name: str
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    chart_account_id: Optional[int] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BankTransactionCreate(BaseModel):
    bank_account_id: int
    transaction_date: date
    description: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    transaction_type: TransactionTypeEnum
    category: Optional[str] = None
    ai_suggested_category: Optional[str] = None
    ai_category_confidence: Optional[Decimal] = Field(None, ge=0, le=1)


class BankTransactionUpdate(BaseModel):
    transaction_date: Optional[date] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0)
    transaction_type: Optional[TransactionTypeEnum] = None


class CategorizeRequest(BaseModel):
    category: str = Field(..., min_length=1)


class BulkCategorizeRequest(BaseModel):
    transaction_ids: List[int] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)


class BulkPostRequest(BaseModel):
    transaction_ids: List[int] = Field(..., min_length=1)


class BulkOperationResult(BaseModel):
    success_count: int
    error_count: int
    errors: List[Dict[str, Any]] = []


class BankTransactionResponse(BaseModel):
    id: int
    bank_account_id: int
    source_document_id: Optional[int] = None
    transaction_date: date
    description: Optional[str] = None
    amount: Decimal
    transaction_type: str
    category: Optional[str] = None
    status: str
    ai_suggested_category: Optional[str] = None
    ai_category_confidence: Optional[Decimal] = None
    is_reviewed: bool
    journal_entry_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== CUSTOMER SCHEMAS ====================

class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    legal_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None
    place: Optional[str] = None
    pincode: Optional[str] = None
    tax_id: Optional[str] = None


class CustomerCreate(CustomerBase):
    email: Optional[EmailStr] = None


class CustomerResponse(CustomerBase):
    id: int
    email: Optional[str] = None
    is_placeholder: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== SALES SCHEMAS ====================

class LineItemCreate(BaseModel):
    description: Optional[str] = None
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class LineItemResponse(BaseModel):
    id: int
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    customer_id: Optional[int] = None
    quotation_id: Optional[int] = None
    source_document_id: Optional[int] = None
    invoice_type: Optional[str] = None
    invoice_date: date
    due_date: Optional[date] = None
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    notes: Optional[str] = None
    created_at: datetime
    items: List[LineItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


class QuotationCreate(BaseModel):
    customer_id: Optional[int] = None
    quotation_number: Optional[str] = None
    quotation_date: date
    valid_until: Optional[date] = None
    tax_rate: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[LineItemCreate] = Field(..., min_length=1)


class QuotationResponse(BaseModel):
    id: int
    quotation_number: str
    customer_id: Optional[int] = None
    quotation_date: date
    valid_until: Optional[date] = None
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    status: str
    notes: Optional[str] = None
    converted_invoice_id: Optional[int] = None
    created_at: datetime
    items: List[LineItemResponse] = []

    model_config = ConfigDict(from_attributes=True)
