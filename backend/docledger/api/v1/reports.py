"""
Reports API Routes
"""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date, datetime
from io import BytesIO

from docledger.core.database import get_db
from docledger.core.security import get_current_user_id
from docledger.services.report_service import ReportService

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/trial-balance")
async def get_trial_balance(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Trial balance from current account balances"""
    report_service = ReportService(db)
    return report_service.trial_balance(user_id)


@router.get("/trial-balance/excel")
async def export_trial_balance_excel(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Trial balance as an Excel workbook"""
    report_service = ReportService(db)
    content = report_service.trial_balance_workbook(user_id)

    filename = f"trial_balance_{datetime.now().strftime('%Y%m%d')}.xlsx"

    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.get("/profit-loss")
async def get_profit_and_loss(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Profit and loss statement"""
    report_service = ReportService(db)
    return report_service.profit_and_loss(user_id)


@router.get("/balance-sheet")
async def get_balance_sheet(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Balance sheet"""
    report_service = ReportService(db)
    return report_service.balance_sheet(user_id)


@router.get("/day-book")
async def get_day_book_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Day book with totals for the period"""
    report_service = ReportService(db)
    return report_service.day_book(user_id, start_date, end_date)
