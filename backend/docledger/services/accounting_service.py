"""
Accounting Service - Chart of Accounts, Journal Entries, Day Book
"""
from typing import Optional, List
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from datetime import date, datetime
import logging

from docledger.core.config import settings
from docledger.core.exceptions import (
    DocLedgerError, EntryValidationError, InvalidStateError, NotFoundError,
    UnbalancedEntryError
)
from docledger.models import (
    DEBIT_NORMAL_TYPES, ChartOfAccount, DayBookEntry, EntryNumberSequence,
    JournalEntry, JournalEntryLine, JournalEntryStatus
)
from docledger.schemas import AccountCreate, AccountUpdate, JournalEntryCreate

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = Decimal("0.01")
ZERO = Decimal("0")


def normal_sign(account_type: str) -> int:
    """+1 for debit-normal (asset, expense) accounts, -1 for the rest"""
    return 1 if (account_type or '').lower() in DEBIT_NORMAL_TYPES else -1


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, account_id: int, owner_id: str) -> Optional[ChartOfAccount]:
        return self.db.query(ChartOfAccount).filter(
            ChartOfAccount.id == account_id,
            ChartOfAccount.owner_id == owner_id
        ).first()

    def get_by_name(self, account_name: str, owner_id: str) -> Optional[ChartOfAccount]:
        return self.db.query(ChartOfAccount).filter(
            ChartOfAccount.owner_id == owner_id,
            func.lower(ChartOfAccount.account_name) == account_name.strip().lower()
        ).first()

    def get_by_owner(
        self,
        owner_id: str,
        include_inactive: bool = False,
        account_type: Optional[str] = None
    ) -> List[ChartOfAccount]:
        query = self.db.query(ChartOfAccount).filter(ChartOfAccount.owner_id == owner_id)
        if not include_inactive:
            query = query.filter(ChartOfAccount.is_active == True)
        if account_type:
            query = query.filter(ChartOfAccount.account_type == account_type)
        return query.order_by(ChartOfAccount.account_type, ChartOfAccount.account_name).all()

    def create(self, account_data: AccountCreate, owner_id: str) -> ChartOfAccount:
        """
        Create an account. The opening balance is entered on the account's
        normal side and converted to the debit-minus-credit running balance.
        """
        account_type = account_data.account_type
        if hasattr(account_type, 'value'):
            account_type = account_type.value

        if self.get_by_name(account_data.account_name, owner_id):
            raise EntryValidationError(f"Account with name '{account_data.account_name}' already exists")

        if account_data.parent_account_id and not self.get_by_id(account_data.parent_account_id, owner_id):
            raise EntryValidationError("Parent account not found")

        opening = account_data.opening_balance or ZERO
        account = ChartOfAccount(
            owner_id=owner_id,
            account_name=account_data.account_name.strip(),
            account_type=account_type,
            account_subtype=account_data.account_subtype,
            parent_account_id=account_data.parent_account_id,
            opening_balance=opening,
            current_balance=opening * normal_sign(account_type)
        )
        self.db.add(account)
        self.db.flush()
        return account

    def get_or_create(self, account_name: str, account_type: str, owner_id: str, subtype: str = None) -> ChartOfAccount:
        account = self.get_by_name(account_name, owner_id)
        if account:
            return account
        return self.create(
            AccountCreate(account_name=account_name, account_type=account_type, account_subtype=subtype),
            owner_id
        )

    def update(self, account_id: int, owner_id: str, account_data: AccountUpdate) -> Optional[ChartOfAccount]:
        account = self.get_by_id(account_id, owner_id)
        if not account:
            return None

        update_data = account_data.model_dump(exclude_unset=True)

        if update_data.get('account_name'):
            existing = self.get_by_name(update_data['account_name'], owner_id)
            if existing and existing.id != account_id:
                raise EntryValidationError(f"Account with name '{update_data['account_name']}' already exists")

        new_opening = update_data.pop('opening_balance', None)
        for key, value in update_data.items():
            if value is not None:
                setattr(account, key, value)

        # Administrative correction: shift the running balance by the change
        if new_opening is not None and new_opening != (account.opening_balance or ZERO):
            delta = (new_opening - (account.opening_balance or ZERO)) * normal_sign(account.account_type)
            account.opening_balance = new_opening
            self.db.flush()
            self.apply_balance_delta(account.id, delta)
            logger.info(f"Opening balance of account {account.id} corrected to {new_opening}")

        self.db.flush()
        return account

    def apply_balance_delta(self, account_id: int, delta: Decimal):
        """Atomic SQL-side increment of current_balance"""
        updated = self.db.query(ChartOfAccount).filter(
            ChartOfAccount.id == account_id
        ).update({
            ChartOfAccount.current_balance: ChartOfAccount.current_balance + delta,
            ChartOfAccount.updated_at: datetime.utcnow()
        }, synchronize_session=False)
        if updated != 1:
            raise NotFoundError(f"Account {account_id} not found")

        account = self.db.get(ChartOfAccount, account_id)
        if account is not None:
            self.db.expire(account, ['current_balance', 'updated_at'])


class JournalEntryService:
    def __init__(self, db: Session):
        self.db = db
        self.accounts = AccountService(db)

    def get_by_id(self, entry_id: int, owner_id: str) -> Optional[JournalEntry]:
        return self.db.query(JournalEntry).options(
            joinedload(JournalEntry.lines)
        ).filter(
            JournalEntry.id == entry_id,
            JournalEntry.owner_id == owner_id
        ).first()

    def get_by_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[JournalEntry]:
        query = self.db.query(JournalEntry).filter(JournalEntry.owner_id == owner_id)
        if status:
            query = query.filter(JournalEntry.status == status)
        if start_date:
            query = query.filter(JournalEntry.entry_date >= start_date)
        if end_date:
            query = query.filter(JournalEntry.entry_date <= end_date)
        return query.order_by(JournalEntry.entry_date.desc(), JournalEntry.id.desc()).all()

    def next_entry_number(self, prefix: str, entry_date: date) -> str:
        """
        Next number from the per-(prefix, day) counter, e.g. JE20240115001.
        The counter is bumped with an SQL-side increment so two sessions
        never read the same value.
        """
        counter = self.db.query(EntryNumberSequence).filter(
            EntryNumberSequence.prefix == prefix,
            EntryNumberSequence.sequence_date == entry_date
        )
        bumped = counter.update(
            {EntryNumberSequence.last_value: EntryNumberSequence.last_value + 1},
            synchronize_session=False
        )
        if not bumped:
            try:
                with self.db.begin_nested():
                    self.db.add(EntryNumberSequence(prefix=prefix, sequence_date=entry_date, last_value=1))
            except IntegrityError:
                # Another session created today's counter first
                counter.update(
                    {EntryNumberSequence.last_value: EntryNumberSequence.last_value + 1},
                    synchronize_session=False
                )

        value = self.db.query(EntryNumberSequence.last_value).filter(
            EntryNumberSequence.prefix == prefix,
            EntryNumberSequence.sequence_date == entry_date
        ).scalar()
        return f"{prefix}{entry_date.strftime('%Y%m%d')}{value:03d}"

    def _insert_with_number(self, prefix: str, entry_date: date, build) -> JournalEntry:
        """
        Insert an entry (header and lines) under a fresh number, retrying when
        the number is already taken. ``build(number)`` returns the unsaved entry.
        """
        for attempt in range(1, settings.ENTRY_NUMBER_MAX_RETRIES + 1):
            number = self.next_entry_number(prefix, entry_date)
            try:
                with self.db.begin_nested():
                    entry = build(number)
                    self.db.add(entry)
                    self.db.flush()
                return entry
            except IntegrityError:
                logger.warning(f"Entry number {number} already taken (attempt {attempt}), retrying")

        raise DocLedgerError(f"Could not allocate a unique {prefix} entry number")

    def validate(self, entry_data: JournalEntryCreate, owner_id: str):
        """Checks every manual entry must pass before anything is written"""
        if not entry_data.description or not entry_data.description.strip():
            raise EntryValidationError("Description is required")

        lines = [l for l in entry_data.lines if (l.debit_amount or ZERO) > 0 or (l.credit_amount or ZERO) > 0]
        if len(lines) < 2:
            raise EntryValidationError("At least two lines with a non-zero amount are required")

        for line in lines:
            if line.debit_amount > 0 and line.credit_amount > 0:
                raise EntryValidationError("A line cannot carry both a debit and a credit amount")
            if not self.accounts.get_by_id(line.account_id, owner_id):
                raise EntryValidationError(f"Account {line.account_id} not found")

        total_debit = sum((l.debit_amount for l in lines), ZERO)
        total_credit = sum((l.credit_amount for l in lines), ZERO)
        difference = abs(total_debit - total_credit)
        if difference > BALANCE_TOLERANCE:
            raise UnbalancedEntryError(
                f"Entry is not balanced: debits {total_debit} and credits {total_credit} "
                f"differ by {difference}"
            )
        return lines, total_debit, total_credit

    def create(self, owner_id: str, entry_data: JournalEntryCreate) -> JournalEntry:
        """Create a draft entry with its lines in one savepoint"""
        lines, total_debit, total_credit = self.validate(entry_data, owner_id)
        account_names = {
            line.account_id: self.accounts.get_by_id(line.account_id, owner_id).account_name
            for line in lines
        }

        def build(number: str) -> JournalEntry:
            entry = JournalEntry(
                owner_id=owner_id,
                entry_number=number,
                entry_date=entry_data.entry_date,
                description=entry_data.description.strip(),
                reference_type=entry_data.reference_type,
                reference_id=entry_data.reference_id,
                total_debit=total_debit,
                total_credit=total_credit,
                status=JournalEntryStatus.DRAFT.value
            )
            for order, line in enumerate(lines, start=1):
                entry.lines.append(JournalEntryLine(
                    account_id=line.account_id,
                    account_name=account_names[line.account_id],
                    description=line.description,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    line_order=order
                ))
            return entry

        entry = self._insert_with_number("JE", entry_data.entry_date, build)
        logger.info(f"Created draft journal entry {entry.entry_number} for {owner_id}")
        return entry

    def create_posted_summary(
        self,
        owner_id: str,
        prefix: str,
        entry_date: date,
        description: str,
        amount: Decimal,
        posted_by: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> JournalEntry:
        """
        Posted entry without lines carrying one undifferentiated movement of
        ``amount`` on both sides; used when posting purchases and expenses.
        """
        now = datetime.utcnow()

        def build(number: str) -> JournalEntry:
            return JournalEntry(
                owner_id=owner_id,
                entry_number=number,
                entry_date=entry_date,
                description=description,
                reference_type=reference_type,
                reference_id=reference_id,
                total_debit=amount,
                total_credit=amount,
                status=JournalEntryStatus.POSTED.value,
                posted_at=now,
                posted_by=posted_by
            )

        entry = self._insert_with_number(prefix, entry_date, build)
        logger.info(f"Created posted journal entry {entry.entry_number} ({amount}) for {owner_id}")
        return entry

    def post(self, owner_id: str, entry_id: int, posted_by: str) -> JournalEntry:
        """
        Post a draft: lock its status, apply each line to its account balance
        and write the day-book rows, all or nothing.
        """
        entry = self.get_by_id(entry_id, owner_id)
        if not entry:
            raise NotFoundError("Journal entry not found")
        if entry.status != JournalEntryStatus.DRAFT.value:
            raise InvalidStateError(f"Only draft entries can be posted (entry is {entry.status})")

        difference = abs((entry.total_debit or ZERO) - (entry.total_credit or ZERO))
        if difference > BALANCE_TOLERANCE:
            raise UnbalancedEntryError(f"Entry {entry.entry_number} is not balanced")

        with self.db.begin_nested():
            locked = self.db.query(JournalEntry).filter(
                JournalEntry.id == entry.id,
                JournalEntry.status == JournalEntryStatus.DRAFT.value
            ).update({
                JournalEntry.status: JournalEntryStatus.POSTED.value,
                JournalEntry.posted_at: datetime.utcnow(),
                JournalEntry.posted_by: posted_by
            }, synchronize_session=False)
            if locked != 1:
                raise InvalidStateError("Journal entry was posted concurrently")

            for line in entry.lines:
                delta = (line.debit_amount or ZERO) - (line.credit_amount or ZERO)
                self.accounts.apply_balance_delta(line.account_id, delta)
                self.db.add(DayBookEntry(
                    owner_id=owner_id,
                    journal_entry_id=entry.id,
                    entry_date=entry.entry_date,
                    account_id=line.account_id,
                    account_name=line.account_name,
                    description=line.description or entry.description,
                    debit_amount=line.debit_amount or ZERO,
                    credit_amount=line.credit_amount or ZERO,
                    reference_number=entry.entry_number
                ))
            self.db.flush()

        self.db.expire(entry, ['status', 'posted_at', 'posted_by'])
        logger.info(f"Posted journal entry {entry.entry_number} ({len(entry.lines)} lines) by {posted_by}")
        return entry

    def delete(self, owner_id: str, entry_id: int) -> bool:
        entry = self.get_by_id(entry_id, owner_id)
        if not entry:
            raise NotFoundError("Journal entry not found")
        if entry.status != JournalEntryStatus.DRAFT.value:
            raise InvalidStateError("Only draft entries can be deleted")

        self.db.delete(entry)
        self.db.flush()
        return True

    def day_book(self, owner_id: str, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[DayBookEntry]:
        query = self.db.query(DayBookEntry).filter(DayBookEntry.owner_id == owner_id)
        if start_date:
            query = query.filter(DayBookEntry.entry_date >= start_date)
        if end_date:
            query = query.filter(DayBookEntry.entry_date <= end_date)
        return query.order_by(DayBookEntry.entry_date.desc(), DayBookEntry.id.desc()).all()
