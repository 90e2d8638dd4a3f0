"""
Report Service - Trial Balance, Profit & Loss, Balance Sheet, Day Book
"""
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from decimal import Decimal
from datetime import date, datetime
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill

from docledger.models import AccountType, ChartOfAccount, DEBIT_NORMAL_TYPES
from docledger.services.accounting_service import BALANCE_TOLERANCE, JournalEntryService

ZERO = Decimal("0")


def normal_balance(account_type: str, current_balance) -> Decimal:
    """Balance on the account's normal side from the debit-minus-credit running balance"""
    balance = Decimal(current_balance or 0)
    if (account_type or '').lower() in DEBIT_NORMAL_TYPES:
        return balance
    return -balance


def trial_balance_line(account_type: str, balance) -> Dict:
    """
    Debit/credit columns for one account given its normal-side balance.

    Asset and expense accounts show a non-negative balance as a debit and a
    negative one as a credit (contra). Liability, equity and income accounts
    show a non-negative balance as a credit and a negative one as a debit.
    """
    balance = Decimal(balance or 0)
    debit_normal = (account_type or '').lower() in DEBIT_NORMAL_TYPES

    if balance >= 0:
        debit, credit = (balance, ZERO) if debit_normal else (ZERO, balance)
    else:
        debit, credit = (ZERO, abs(balance)) if debit_normal else (abs(balance), ZERO)

    return {
        "debit_balance": debit,
        "credit_balance": credit,
        "is_contra": balance < 0,
    }


class ReportService:
    """Financial reports service"""

    def __init__(self, db: Session):
        self.db = db

    def _accounts(self, owner_id: str, types: Optional[List[str]] = None) -> List[ChartOfAccount]:
        query = self.db.query(ChartOfAccount).filter(
            ChartOfAccount.owner_id == owner_id,
            ChartOfAccount.is_active == True
        )
        if types:
            query = query.filter(ChartOfAccount.account_type.in_(types))
        return query.order_by(ChartOfAccount.account_type, ChartOfAccount.account_name).all()

    def trial_balance(self, owner_id: str) -> Dict:
        """Generate trial balance report"""
        rows = []
        total_debit = ZERO
        total_credit = ZERO

        for account in self._accounts(owner_id):
            balance = normal_balance(account.account_type, account.current_balance)
            line = trial_balance_line(account.account_type, balance)
            total_debit += line["debit_balance"]
            total_credit += line["credit_balance"]
            rows.append({
                "account_id": account.id,
                "account_name": account.account_name,
                "account_type": account.account_type,
                "balance": float(balance),
                "debit_balance": float(line["debit_balance"]),
                "credit_balance": float(line["credit_balance"]),
                "is_contra": line["is_contra"],
            })

        difference = total_debit - total_credit
        return {
            "accounts": rows,
            "total_debit": float(total_debit),
            "total_credit": float(total_credit),
            "difference": float(difference),
            "is_balanced": abs(difference) <= BALANCE_TOLERANCE,
            "generated_at": datetime.utcnow().isoformat(),
        }

    def profit_and_loss(self, owner_id: str) -> Dict:
        """Generate profit and loss statement"""
        income, expenses = [], []
        total_income = ZERO
        total_expense = ZERO

        for account in self._accounts(owner_id, [AccountType.INCOME.value, AccountType.EXPENSE.value]):
            amount = normal_balance(account.account_type, account.current_balance)
            row = {
                "account_id": account.id,
                "account_name": account.account_name,
                "amount": float(amount),
                "is_contra": amount < 0,
            }
            if account.account_type == AccountType.INCOME.value:
                income.append(row)
                total_income += amount
            else:
                expenses.append(row)
                total_expense += amount

        return {
            "income": income,
            "expenses": expenses,
            "total_income": float(total_income),
            "total_expenses": float(total_expense),
            "net_profit": float(total_income - total_expense),
            "has_contra_accounts": any(r["is_contra"] for r in income + expenses),
        }

    def balance_sheet(self, owner_id: str) -> Dict:
        """Generate balance sheet with current-period earnings under equity"""
        sections = {
            AccountType.ASSET.value: [],
            AccountType.LIABILITY.value: [],
            AccountType.EQUITY.value: [],
        }
        totals = {key: ZERO for key in sections}

        for account in self._accounts(owner_id, list(sections)):
            amount = normal_balance(account.account_type, account.current_balance)
            sections[account.account_type].append({
                "account_id": account.id,
                "account_name": account.account_name,
                "amount": float(amount),
                "is_contra": amount < 0,
            })
            totals[account.account_type] += amount

        net_profit = Decimal(str(self.profit_and_loss(owner_id)["net_profit"]))
        total_equity = totals[AccountType.EQUITY.value] + net_profit
        liabilities_and_equity = totals[AccountType.LIABILITY.value] + total_equity
        difference = totals[AccountType.ASSET.value] - liabilities_and_equity

        return {
            "assets": sections[AccountType.ASSET.value],
            "liabilities": sections[AccountType.LIABILITY.value],
            "equity": sections[AccountType.EQUITY.value],
            "current_period_earnings": float(net_profit),
            "total_assets": float(totals[AccountType.ASSET.value]),
            "total_liabilities": float(totals[AccountType.LIABILITY.value]),
            "total_equity": float(total_equity),
            "total_liabilities_and_equity": float(liabilities_and_equity),
            "difference": float(difference),
            "is_balanced": abs(difference) <= BALANCE_TOLERANCE,
            "has_contra_accounts": any(r["is_contra"] for rows in sections.values() for r in rows),
        }

    def day_book(self, owner_id: str, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict:
        """Posted lines in the period, newest first"""
        entries = JournalEntryService(self.db).day_book(owner_id, start_date, end_date)
        total_debit = sum((e.debit_amount or ZERO for e in entries), ZERO)
        total_credit = sum((e.credit_amount or ZERO for e in entries), ZERO)

        return {
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
            "entries": [
                {
                    "id": e.id,
                    "journal_entry_id": e.journal_entry_id,
                    "entry_date": e.entry_date.isoformat(),
                    "account_id": e.account_id,
                    "account_name": e.account_name,
                    "description": e.description,
                    "debit_amount": float(e.debit_amount or 0),
                    "credit_amount": float(e.credit_amount or 0),
                    "reference_number": e.reference_number,
                }
                for e in entries
            ],
            "total_debit": float(total_debit),
            "total_credit": float(total_credit),
        }

    def trial_balance_workbook(self, owner_id: str) -> bytes:
        """Trial balance as an .xlsx file"""
        report = self.trial_balance(owner_id)

        wb = Workbook()
        ws = wb.active
        ws.title = "Trial Balance"

        # Styles
        title_font = Font(bold=True, size=14)
        header_font = Font(bold=True, color="FFFFFF", size=11)
        header_fill = PatternFill(start_color="1e40af", end_color="1e40af", fill_type="solid")
        total_font = Font(bold=True, size=10)
        total_fill = PatternFill(start_color="f3f4f6", end_color="f3f4f6", fill_type="solid")
        thin_border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

        ws['A1'] = "Trial Balance"
        ws['A1'].font = title_font
        ws.merge_cells('A1:E1')
        ws['A2'] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}"

        headers = ['Account', 'Type', 'Balance', 'Debit', 'Credit']
        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=4, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal='center')
            cell.border = thin_border

        row = 5
        for entry in report["accounts"]:
            ws.cell(row=row, column=1, value=entry["account_name"]).border = thin_border
            ws.cell(row=row, column=2, value=entry["account_type"]).border = thin_border
            for col, key in ((3, "balance"), (4, "debit_balance"), (5, "credit_balance")):
                cell = ws.cell(row=row, column=col, value=entry[key])
                cell.number_format = '#,##0.00'
                cell.alignment = Alignment(horizontal='right')
                cell.border = thin_border
            row += 1

        for col in range(1, 6):
            ws.cell(row=row, column=col).fill = total_fill
            ws.cell(row=row, column=col).font = total_font
            ws.cell(row=row, column=col).border = thin_border
        ws.cell(row=row, column=1, value="TOTAL")
        ws.cell(row=row, column=4, value=report["total_debit"]).number_format = '#,##0.00'
        ws.cell(row=row, column=5, value=report["total_credit"]).number_format = '#,##0.00'

        ws.cell(row=row + 1, column=1, value="Difference")
        ws.cell(row=row + 1, column=4, value=report["difference"]).number_format = '#,##0.00'

        for column, width in (('A', 32), ('B', 12), ('C', 16), ('D', 16), ('E', 16)):
            ws.column_dimensions[column].width = width

        output = BytesIO()
        wb.save(output)
        return output.getvalue()
