"""
CRM Service - Customers
"""
from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from docledger.core.exceptions import EntryValidationError
from docledger.models import Customer
from docledger.schemas import CustomerCreate

logger = logging.getLogger(__name__)

# Defaults for customers created while posting a document
PLACEHOLDER_PHONE = "0000000000"
PLACEHOLDER_ADDRESS = "Address not provided"
PLACEHOLDER_REGION = "Not specified"
PLACEHOLDER_PINCODE = "000000"


def placeholder_email(name: str) -> str:
    local = "".join(name.lower().split()) or "customer"
    return f"{local}@example.com"


class CustomerService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, customer_id: int, owner_id: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(
            Customer.id == customer_id,
            Customer.owner_id == owner_id
        ).first()

    def get_by_owner(self, owner_id: str, search: Optional[str] = None, include_inactive: bool = False) -> List[Customer]:
        query = self.db.query(Customer).filter(Customer.owner_id == owner_id)
        if not include_inactive:
            query = query.filter(Customer.is_active == True)
        if search:
            query = query.filter(Customer.name.ilike(f"%{search}%"))
        return query.order_by(Customer.name).all()

    def find_by_name(self, name: str, owner_id: str) -> Optional[Customer]:
        """Case-insensitive exact name match"""
        return self.db.query(Customer).filter(
            Customer.owner_id == owner_id,
            func.lower(Customer.name) == name.strip().lower()
        ).order_by(Customer.id).first()

    def create(self, customer_data: CustomerCreate, owner_id: str) -> Customer:
        if self.find_by_name(customer_data.name, owner_id):
            raise EntryValidationError(f"Customer '{customer_data.name}' already exists")

        customer = Customer(owner_id=owner_id, **customer_data.model_dump())
        self.db.add(customer)
        self.db.flush()
        return customer

    def find_or_create_placeholder(self, name: str, owner_id: str) -> Customer:
        """Existing customer by name, or a minimal record so posting never blocks"""
        name = name.strip() or "Unknown Customer"
        customer = self.find_by_name(name, owner_id)
        if customer:
            return customer

        customer = Customer(
            owner_id=owner_id,
            name=name,
            email=placeholder_email(name),
            phone=PLACEHOLDER_PHONE,
            address=PLACEHOLDER_ADDRESS,
            state=PLACEHOLDER_REGION,
            place=PLACEHOLDER_REGION,
            pincode=PLACEHOLDER_PINCODE,
            is_placeholder=True
        )
        self.db.add(customer)
        self.db.flush()
        logger.info(f"Created placeholder customer '{name}' for {owner_id}")
        return customer
