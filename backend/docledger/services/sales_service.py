"""
Sales Service - Invoices and Quotations
"""
from typing import Optional, List
from sqlalchemy.orm import Session, joinedload
from decimal import Decimal
from datetime import date, timedelta
import logging

from docledger.core.exceptions import EntryValidationError, InvalidStateError, NotFoundError
from docledger.models import (
    Invoice, InvoiceItem, InvoiceStatus, Quotation, QuotationItem, QuotationStatus
)
from docledger.schemas import QuotationCreate
from docledger.services.crm_service import CustomerService

logger = logging.getLogger(__name__)


def calculate_totals(items: List[dict], tax_rate: Decimal = Decimal("0")) -> dict:
    """Subtotal, tax and total for a list of {quantity, unit_price} items"""
    subtotal = sum((item["quantity"] * item["unit_price"] for item in items), Decimal("0"))
    tax_amount = (subtotal * tax_rate / 100) if tax_rate else Decimal("0")
    return {
        "subtotal": subtotal.quantize(Decimal("0.01")),
        "tax_amount": tax_amount.quantize(Decimal("0.01")),
        "total": (subtotal + tax_amount).quantize(Decimal("0.01")),
    }


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, invoice_id: int, owner_id: str) -> Optional[Invoice]:
        return self.db.query(Invoice).options(
            joinedload(Invoice.items)
        ).filter(
            Invoice.id == invoice_id,
            Invoice.owner_id == owner_id
        ).first()

    def get_by_owner(self, owner_id: str, status: Optional[str] = None) -> List[Invoice]:
        query = self.db.query(Invoice).filter(Invoice.owner_id == owner_id)
        if status:
            query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()

    def get_next_number(self, owner_id: str) -> str:
        count = self.db.query(Invoice).filter(Invoice.owner_id == owner_id).count()
        return f"INV-{date.today().year}-{count + 1:04d}"


class QuotationService:
    def __init__(self, db: Session):
        self.db = db
        self.invoices = InvoiceService(db)

    def get_by_id(self, quotation_id: int, owner_id: str) -> Optional[Quotation]:
        return self.db.query(Quotation).options(
            joinedload(Quotation.items)
        ).filter(
            Quotation.id == quotation_id,
            Quotation.owner_id == owner_id
        ).first()

    def get_by_owner(self, owner_id: str, status: Optional[str] = None) -> List[Quotation]:
        query = self.db.query(Quotation).filter(Quotation.owner_id == owner_id)
        if status:
            query = query.filter(Quotation.status == status)
        return query.order_by(Quotation.quotation_date.desc(), Quotation.id.desc()).all()

    def get_next_number(self, owner_id: str) -> str:
        count = self.db.query(Quotation).filter(Quotation.owner_id == owner_id).count()
        return f"QUO-{date.today().year}-{count + 1:04d}"

    def create(self, quotation_data: QuotationCreate, owner_id: str) -> Quotation:
        if quotation_data.customer_id and not CustomerService(self.db).get_by_id(quotation_data.customer_id, owner_id):
            raise EntryValidationError("Customer not found")

        items = [item.model_dump() for item in quotation_data.items]
        totals = calculate_totals(items, quotation_data.tax_rate)

        quotation = Quotation(
            owner_id=owner_id,
            quotation_number=quotation_data.quotation_number or self.get_next_number(owner_id),
            customer_id=quotation_data.customer_id,
            quotation_date=quotation_data.quotation_date,
            valid_until=quotation_data.valid_until,
            tax_rate=quotation_data.tax_rate,
            subtotal=totals["subtotal"],
            tax_amount=totals["tax_amount"],
            total=totals["total"],
            status=QuotationStatus.DRAFT.value,
            notes=quotation_data.notes
        )
        for item in items:
            quotation.items.append(QuotationItem(
                description=item["description"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                total=(item["quantity"] * item["unit_price"]).quantize(Decimal("0.01"))
            ))

        self.db.add(quotation)
        self.db.flush()
        return quotation

    def convert_to_invoice(self, quotation_id: int, owner_id: str) -> Invoice:
        """One-time conversion into a draft invoice carrying a back-reference"""
        quotation = self.get_by_id(quotation_id, owner_id)
        if not quotation:
            raise NotFoundError("Quotation not found")
        if quotation.status == QuotationStatus.CONVERTED.value:
            raise InvalidStateError(
                f"Quotation {quotation.quotation_number} was already converted to invoice {quotation.converted_invoice_id}"
            )

        with self.db.begin_nested():
            # Conditional update keeps the conversion one-time under concurrency
            locked = self.db.query(Quotation).filter(
                Quotation.id == quotation.id,
                Quotation.status != QuotationStatus.CONVERTED.value
            ).update({Quotation.status: QuotationStatus.CONVERTED.value}, synchronize_session=False)
            if locked != 1:
                raise InvalidStateError("Quotation was converted concurrently")

            today = date.today()
            invoice = Invoice(
                owner_id=owner_id,
                invoice_number=self.invoices.get_next_number(owner_id),
                customer_id=quotation.customer_id,
                quotation_id=quotation.id,
                invoice_type="converted",
                invoice_date=today,
                due_date=today + timedelta(days=30),
                subtotal=quotation.subtotal,
                tax_rate=quotation.tax_rate,
                tax_amount=quotation.tax_amount,
                total_amount=quotation.total,
                status=InvoiceStatus.DRAFT.value,
                notes=quotation.notes
            )
            for item in quotation.items:
                invoice.items.append(InvoiceItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total
                ))
            self.db.add(invoice)
            self.db.flush()

            self.db.query(Quotation).filter(Quotation.id == quotation.id).update(
                {Quotation.converted_invoice_id: invoice.id}, synchronize_session=False
            )

        self.db.expire(quotation, ['status', 'converted_invoice_id'])
        logger.info(f"Quotation {quotation.quotation_number} converted to invoice {invoice.invoice_number}")
        return invoice
