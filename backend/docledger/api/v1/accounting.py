"""
Accounting API Routes - Chart of Accounts, Journal Entries, Day Book
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from docledger.core.database import commit_unit_of_work, get_db
from docledger.core.security import get_current_user_id
from docledger.models import JournalEntryStatus
from docledger.schemas import (
    AccountCreate, AccountUpdate, AccountResponse, AccountTypeEnum,
    JournalEntryCreate, JournalEntryResponse, DayBookEntryResponse
)
from docledger.services.accounting_service import AccountService, JournalEntryService

router = APIRouter(prefix="/accounting", tags=["Accounting"])


# ==================== CHART OF ACCOUNTS ====================

@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    include_inactive: bool = False,
    account_type: Optional[AccountTypeEnum] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List all accounts"""
    account_service = AccountService(db)
    return account_service.get_by_owner(
        user_id, include_inactive, account_type.value if account_type else None
    )


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def create_account(
    account_data: AccountCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Create a new account"""
    account_service = AccountService(db)
    account = account_service.create(account_data, user_id)
    db.commit()
    db.refresh(account)
    return account


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get account by ID"""
    account_service = AccountService(db)
    account = account_service.get_by_id(account_id, user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.put("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: int,
    account_data: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Update account"""
    account_service = AccountService(db)
    account = account_service.update(account_id, user_id, account_data)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    db.commit()
    db.refresh(account)
    return account


# ==================== JOURNAL ENTRIES ====================

@router.get("/journal-entries", response_model=List[JournalEntryResponse])
async def list_journal_entries(
    status: Optional[JournalEntryStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List journal entries"""
    journal_service = JournalEntryService(db)
    return journal_service.get_by_owner(
        user_id, status.value if status else None, start_date, end_date
    )


@router.post("/journal-entries", response_model=JournalEntryResponse, status_code=201)
def create_journal_entry(
    entry_data: JournalEntryCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Create a draft journal entry; it affects balances once posted"""
    journal_service = JournalEntryService(db)
    entry = commit_unit_of_work(db, lambda: journal_service.create(user_id, entry_data))
    return journal_service.get_by_id(entry.id, user_id)


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get journal entry with lines"""
    journal_service = JournalEntryService(db)
    entry = journal_service.get_by_id(entry_id, user_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryResponse)
def post_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Post a draft entry to the ledger"""
    journal_service = JournalEntryService(db)
    commit_unit_of_work(db, lambda: journal_service.post(user_id, entry_id, posted_by=user_id))
    return journal_service.get_by_id(entry_id, user_id)


@router.delete("/journal-entries/{entry_id}")
async def delete_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Delete a draft journal entry"""
    journal_service = JournalEntryService(db)
    journal_service.delete(user_id, entry_id)
    db.commit()
    return {"message": "Journal entry deleted"}


# ==================== DAY BOOK ====================

@router.get("/day-book", response_model=List[DayBookEntryResponse])
async def get_day_book(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Posted lines for the period"""
    journal_service = JournalEntryService(db)
    return journal_service.day_book(user_id, start_date, end_date)
