"""
Banking Service - Bank Accounts and imported Bank Transactions
"""
from typing import Optional, List, Dict
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload
import logging

from docledger.core.exceptions import (
    DataMissingError, DocLedgerError, EntryValidationError, InvalidStateError, NotFoundError
)
from docledger.models import (
    AccountType, BankAccount, BankTransaction, BankTransactionStatus, ChartOfAccount,
    TransactionType
)
from docledger.schemas import (
    BankAccountCreate, BankTransactionCreate, BankTransactionUpdate,
    JournalEntryCreate, JournalEntryLineCreate
)
from docledger.services.accounting_service import AccountService, JournalEntryService

logger = logging.getLogger(__name__)


class BankAccountService:
    def __init__(self, db: Session):
        self.db = db
        self.accounts = AccountService(db)

    def get_by_id(self, bank_account_id: int, owner_id: str) -> Optional[BankAccount]:
        return self.db.query(BankAccount).filter(
            BankAccount.id == bank_account_id,
            BankAccount.owner_id == owner_id
        ).first()

    def get_by_owner(self, owner_id: str) -> List[BankAccount]:
        return self.db.query(BankAccount).filter(
            BankAccount.owner_id == owner_id,
            BankAccount.is_active == True
        ).order_by(BankAccount.account_name).all()

    def create(self, account_data: BankAccountCreate, owner_id: str) -> BankAccount:
        if account_data.chart_account_id:
            chart_account = self.accounts.get_by_id(account_data.chart_account_id, owner_id)
            if not chart_account:
                raise EntryValidationError("Ledger account not found")
            if chart_account.account_type != AccountType.ASSET.value:
                raise EntryValidationError("A bank account must be linked to an asset account")
        else:
            chart_account = self.accounts.get_or_create(
                account_data.account_name, AccountType.ASSET.value, owner_id, subtype="bank"
            )

        bank_account = BankAccount(
            owner_id=owner_id,
            account_name=account_data.account_name,
            bank_name=account_data.bank_name,
            account_number=account_data.account_number,
            chart_account_id=chart_account.id
        )
        self.db.add(bank_account)
        self.db.flush()
        return bank_account

    def ledger_account(self, bank_account: BankAccount) -> ChartOfAccount:
        """Ledger account for a bank account, created on demand"""
        if bank_account.chart_account_id:
            account = self.accounts.get_by_id(bank_account.chart_account_id, bank_account.owner_id)
            if account:
                return account

        account = self.accounts.get_or_create(
            bank_account.account_name, AccountType.ASSET.value, bank_account.owner_id, subtype="bank"
        )
        bank_account.chart_account_id = account.id
        self.db.flush()
        return account


class BankTransactionService:
    def __init__(self, db: Session):
        self.db = db
        self.bank_accounts = BankAccountService(db)
        self.journal = JournalEntryService(db)

    def get_by_id(self, transaction_id: int, owner_id: str) -> Optional[BankTransaction]:
        return self.db.query(BankTransaction).options(
            joinedload(BankTransaction.bank_account)
        ).filter(
            BankTransaction.id == transaction_id,
            BankTransaction.owner_id == owner_id
        ).first()

    def get_by_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        bank_account_id: Optional[int] = None
    ) -> List[BankTransaction]:
        query = self.db.query(BankTransaction).filter(BankTransaction.owner_id == owner_id)
        if status:
            query = query.filter(BankTransaction.status == status)
        if bank_account_id:
            query = query.filter(BankTransaction.bank_account_id == bank_account_id)
        return query.order_by(BankTransaction.transaction_date.desc(), BankTransaction.id.desc()).all()

    def _get_editable(self, transaction_id: int, owner_id: str) -> BankTransaction:
        transaction = self.get_by_id(transaction_id, owner_id)
        if not transaction:
            raise NotFoundError("Transaction not found")
        if transaction.status == BankTransactionStatus.POSTED.value:
            raise InvalidStateError("Posted transactions cannot be changed")
        return transaction

    def create(self, transaction_data: BankTransactionCreate, owner_id: str) -> BankTransaction:
        if not self.bank_accounts.get_by_id(transaction_data.bank_account_id, owner_id):
            raise EntryValidationError("Bank account not found")

        category = (transaction_data.category or "").strip() or None
        transaction = BankTransaction(
            owner_id=owner_id,
            bank_account_id=transaction_data.bank_account_id,
            transaction_date=transaction_data.transaction_date,
            description=transaction_data.description,
            amount=transaction_data.amount,
            transaction_type=transaction_data.transaction_type.value,
            category=category,
            status=BankTransactionStatus.CATEGORIZED.value if category else BankTransactionStatus.UNCATEGORIZED.value,
            ai_suggested_category=transaction_data.ai_suggested_category,
            ai_category_confidence=transaction_data.ai_category_confidence
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def update(self, transaction_id: int, owner_id: str, transaction_data: BankTransactionUpdate) -> BankTransaction:
        transaction = self._get_editable(transaction_id, owner_id)

        update_data = transaction_data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            if value is None:
                continue
            if key == 'transaction_type':
                value = value.value if hasattr(value, 'value') else value
            setattr(transaction, key, value)

        self.db.flush()
        return transaction

    def categorize(self, transaction_id: int, owner_id: str, category: str) -> BankTransaction:
        category = (category or "").strip()
        if not category:
            raise EntryValidationError("Category is required")

        transaction = self._get_editable(transaction_id, owner_id)
        transaction.category = category
        transaction.status = BankTransactionStatus.CATEGORIZED.value
        transaction.is_reviewed = True
        self.db.flush()
        return transaction

    def uncategorize(self, transaction_id: int, owner_id: str) -> BankTransaction:
        transaction = self._get_editable(transaction_id, owner_id)
        transaction.category = None
        transaction.status = BankTransactionStatus.UNCATEGORIZED.value
        transaction.is_reviewed = False
        self.db.flush()
        return transaction

    def bulk_categorize(self, transaction_ids: List[int], owner_id: str, category: str) -> Dict:
        return self._bulk(transaction_ids, lambda tid: self.categorize(tid, owner_id, category))

    def post(self, transaction_id: int, owner_id: str, posted_by: str) -> BankTransaction:
        """
        Post a categorized transaction as a two-line journal entry between the
        bank's ledger account and the category account. Money coming in
        (credit) debits the bank account.
        """
        transaction = self._get_editable(transaction_id, owner_id)
        if not transaction.category:
            raise DataMissingError("Transaction must be categorized before posting")

        category_account = self.journal.accounts.get_by_name(transaction.category, owner_id)
        if not category_account:
            raise DataMissingError(f"Category account '{transaction.category}' not found in chart of accounts")

        with self.db.begin_nested():
            bank_ledger = self.bank_accounts.ledger_account(transaction.bank_account)
            is_credit = transaction.transaction_type == TransactionType.CREDIT.value
            amount = transaction.amount
            zero = Decimal("0")

            entry = self.journal.create(owner_id, JournalEntryCreate(
                entry_date=transaction.transaction_date,
                description=f"Bank transaction: {transaction.description or transaction.category}",
                reference_type="bank_transaction",
                reference_id=str(transaction.id),
                lines=[
                    JournalEntryLineCreate(
                        account_id=bank_ledger.id,
                        description=transaction.description,
                        debit_amount=amount if is_credit else zero,
                        credit_amount=zero if is_credit else amount
                    ),
                    JournalEntryLineCreate(
                        account_id=category_account.id,
                        description=transaction.description,
                        debit_amount=zero if is_credit else amount,
                        credit_amount=amount if is_credit else zero
                    ),
                ]
            ))
            self.journal.post(owner_id, entry.id, posted_by)

            transaction.status = BankTransactionStatus.POSTED.value
            transaction.journal_entry_id = entry.id
            transaction.is_reviewed = True
            self.db.flush()

        logger.info(f"Bank transaction {transaction.id} posted as {entry.entry_number}")
        return transaction

    def bulk_post(self, transaction_ids: List[int], owner_id: str, posted_by: str) -> Dict:
        return self._bulk(transaction_ids, lambda tid: self.post(tid, owner_id, posted_by))

    def delete(self, transaction_id: int, owner_id: str) -> bool:
        transaction = self._get_editable(transaction_id, owner_id)
        self.db.delete(transaction)
        self.db.flush()
        return True

    def _bulk(self, transaction_ids: List[int], operation) -> Dict:
        """Apply an operation per id in its own savepoint; failures don't stop the batch"""
        success_count = 0
        errors = []
        for transaction_id in transaction_ids:
            try:
                with self.db.begin_nested():
                    operation(transaction_id)
                success_count += 1
            except DocLedgerError as e:
                logger.warning(f"Bulk operation failed for transaction {transaction_id}: {e.message}")
                errors.append({"transaction_id": transaction_id, "error": e.message})

        return {
            "success_count": success_count,
            "error_count": len(errors),
            "errors": errors,
        }
