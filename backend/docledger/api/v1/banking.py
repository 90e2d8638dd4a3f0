"""
Banking API Routes - Bank Accounts and Transaction Review
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from docledger.core.database import commit_unit_of_work, get_db
from docledger.core.security import get_current_user_id
from docledger.models import BankTransactionStatus
from docledger.schemas import (
    BankAccountCreate, BankAccountResponse,
    BankTransactionCreate, BankTransactionUpdate, BankTransactionResponse,
    CategorizeRequest, BulkCategorizeRequest, BulkPostRequest, BulkOperationResult
)
from docledger.services.banking_service import BankAccountService, BankTransactionService

router = APIRouter(prefix="/banking", tags=["Banking"])


# ==================== BANK ACCOUNTS ====================

@router.get("/accounts", response_model=List[BankAccountResponse])
async def list_bank_accounts(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List bank accounts"""
    bank_service = BankAccountService(db)
    return bank_service.get_by_owner(user_id)


@router.post("/accounts", response_model=BankAccountResponse, status_code=201)
async def create_bank_account(
    account_data: BankAccountCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Create a bank account linked to an asset ledger account"""
    bank_service = BankAccountService(db)
    account = bank_service.create(account_data, user_id)
    db.commit()
    db.refresh(account)
    return account


@router.get("/accounts/{account_id}", response_model=BankAccountResponse)
async def get_bank_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get bank account by ID"""
    bank_service = BankAccountService(db)
    account = bank_service.get_by_id(account_id, user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Bank account not found")
    return account


# ==================== BANK TRANSACTIONS ====================

@router.get("/transactions", response_model=List[BankTransactionResponse])
async def list_transactions(
    status: Optional[BankTransactionStatus] = None,
    bank_account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List bank transactions"""
    transaction_service = BankTransactionService(db)
    return transaction_service.get_by_owner(user_id, status.value if status else None, bank_account_id)


@router.post("/transactions", response_model=BankTransactionResponse, status_code=201)
async def create_transaction(
    transaction_data: BankTransactionCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Record a bank transaction"""
    transaction_service = BankTransactionService(db)
    transaction = transaction_service.create(transaction_data, user_id)
    db.commit()
    db.refresh(transaction)
    return transaction


@router.post("/transactions/bulk-categorize", response_model=BulkOperationResult)
async def bulk_categorize_transactions(
    request: BulkCategorizeRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Categorize many transactions; failures are reported per id"""
    transaction_service = BankTransactionService(db)
    result = transaction_service.bulk_categorize(request.transaction_ids, user_id, request.category)
    db.commit()
    return result


@router.post("/transactions/bulk-post", response_model=BulkOperationResult)
def bulk_post_transactions(
    request: BulkPostRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Post many categorized transactions; failures are reported per id"""
    transaction_service = BankTransactionService(db)
    result = commit_unit_of_work(
        db, lambda: transaction_service.bulk_post(request.transaction_ids, user_id, posted_by=user_id)
    )
    return result


@router.get("/transactions/{transaction_id}", response_model=BankTransactionResponse)
async def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get bank transaction by ID"""
    transaction_service = BankTransactionService(db)
    transaction = transaction_service.get_by_id(transaction_id, user_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.put("/transactions/{transaction_id}", response_model=BankTransactionResponse)
async def update_transaction(
    transaction_id: int,
    transaction_data: BankTransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Update an unposted transaction"""
    transaction_service = BankTransactionService(db)
    transaction = transaction_service.update(transaction_id, user_id, transaction_data)
    db.commit()
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/categorize", response_model=BankTransactionResponse)
async def categorize_transaction(
    transaction_id: int,
    request: CategorizeRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Assign a category"""
    transaction_service = BankTransactionService(db)
    transaction = transaction_service.categorize(transaction_id, user_id, request.category)
    db.commit()
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/uncategorize", response_model=BankTransactionResponse)
async def uncategorize_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Clear the category"""
    transaction_service = BankTransactionService(db)
    transaction = transaction_service.uncategorize(transaction_id, user_id)
    db.commit()
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/post", response_model=BankTransactionResponse)
def post_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Post a categorized transaction to the ledger"""
    transaction_service = BankTransactionService(db)
    transaction = commit_unit_of_work(
        db, lambda: transaction_service.post(transaction_id, user_id, posted_by=user_id)
    )
    db.refresh(transaction)
    return transaction


@router.delete("/transactions/{transaction_id}")
async def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Delete an unposted transaction"""
    transaction_service = BankTransactionService(db)
    transaction_service.delete(transaction_id, user_id)
    db.commit()
    return {"message": "Transaction deleted"}
