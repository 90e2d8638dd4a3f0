"""
Sales API Routes - Customers, Invoices and Quotations
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from docledger.core.database import get_db
from docledger.core.security import get_current_user_id
from docledger.schemas import (
    CustomerCreate, CustomerResponse, InvoiceResponse,
    QuotationCreate, QuotationResponse
)
from docledger.services.crm_service import CustomerService
from docledger.services.sales_service import InvoiceService, QuotationService

router = APIRouter(prefix="/sales", tags=["Sales"])


# ==================== CUSTOMERS ====================

@router.get("/customers", response_model=List[CustomerResponse])
async def list_customers(
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List customers"""
    customer_service = CustomerService(db)
    return customer_service.get_by_owner(user_id, search, include_inactive)


@router.post("/customers", response_model=CustomerResponse, status_code=201)
async def create_customer(
    customer_data: CustomerCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Create a customer"""
    customer_service = CustomerService(db)
    customer = customer_service.create(customer_data, user_id)
    db.commit()
    db.refresh(customer)
    return customer


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get customer by ID"""
    customer_service = CustomerService(db)
    customer = customer_service.get_by_id(customer_id, user_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


# ==================== INVOICES ====================

@router.get("/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List invoices"""
    invoice_service = InvoiceService(db)
    return invoice_service.get_by_owner(user_id, status)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get invoice with items"""
    invoice_service = InvoiceService(db)
    invoice = invoice_service.get_by_id(invoice_id, user_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


# ==================== QUOTATIONS ====================

@router.get("/quotations", response_model=List[QuotationResponse])
async def list_quotations(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List quotations"""
    quotation_service = QuotationService(db)
    return quotation_service.get_by_owner(user_id, status)


@router.post("/quotations", response_model=QuotationResponse, status_code=201)
async def create_quotation(
    quotation_data: QuotationCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Create a quotation"""
    quotation_service = QuotationService(db)
    quotation = quotation_service.create(quotation_data, user_id)
    db.commit()
    return quotation_service.get_by_id(quotation.id, user_id)


@router.get("/quotations/{quotation_id}", response_model=QuotationResponse)
async def get_quotation(
    quotation_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get quotation with items"""
    quotation_service = QuotationService(db)
    quotation = quotation_service.get_by_id(quotation_id, user_id)
    if not quotation:
        raise HTTPException(status_code=404, detail="Quotation not found")
    return quotation


@router.post("/quotations/{quotation_id}/convert", response_model=InvoiceResponse)
async def convert_quotation(
    quotation_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Convert a quotation into an invoice (once)"""
    quotation_service = QuotationService(db)
    invoice = quotation_service.convert_to_invoice(quotation_id, user_id)
    db.commit()
    return InvoiceService(db).get_by_id(invoice.id, user_id)
