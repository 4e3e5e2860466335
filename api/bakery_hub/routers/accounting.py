# bakery_hub/routers/accounting.py
"""
Accounting Router - expenses, manual revenue, ledger listing and summary.
Owner only.
"""
from __future__ import annotations
import calendar
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.auth import owner_only
from bakery_hub.database import get_session
from bakery_hub.dates import utcnow
from bakery_hub.db_models import TransactionType
from bakery_hub.models import ExpenseIn, ManualRevenueIn, TransactionOut
from bakery_hub.services.ledger import LedgerReconciler, parse_expense_category

router = APIRouter(tags=["Accounting"], dependencies=[Depends(owner_only)])


def tx_payload(tx) -> Dict[str, Any]:
    return TransactionOut.model_validate(tx).model_dump(mode="json")


# ============================================================================
# Expenses
# ============================================================================

@router.get("/expenses")
async def list_expenses(
    start: Optional[date] = None,
    end: Optional[date] = None,
    category: Optional[str] = None,
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    ledger = LedgerReconciler(db)
    rows = await ledger.list_transactions(
        tx_type=TransactionType.expense,
        start=start,
        end=end,
        category=parse_expense_category(category) if category else None,
        limit=limit,
        offset=offset,
    )
    return {"success": True, "expenses": [tx_payload(t) for t in rows], "count": len(rows)}


@router.post("/expenses", status_code=201)
async def create_expense(payload: ExpenseIn, db: AsyncSession = Depends(get_session)):
    tx = await LedgerReconciler(db).create_expense(
        tx_date=payload.date,
        category=payload.category,
        amount=payload.amount,
        description=payload.description,
        currency=payload.currency,
        notes=payload.notes,
        receipt_url=payload.receipt_url,
    )
    return {"success": True, "message": "Expense created successfully", "expense": tx_payload(tx)}


@router.put("/expenses/{expense_id}")
async def update_expense(expense_id: int, payload: ExpenseIn, db: AsyncSession = Depends(get_session)):
    tx = await LedgerReconciler(db).update_expense(
        expense_id,
        tx_date=payload.date,
        category=payload.category,
        amount=payload.amount,
        description=payload.description,
        currency=payload.currency,
        notes=payload.notes,
        receipt_url=payload.receipt_url,
    )
    return {"success": True, "message": "Expense updated successfully", "expense": tx_payload(tx)}


@router.delete("/expenses/{expense_id}")
async def delete_expense(expense_id: int, db: AsyncSession = Depends(get_session)):
    await LedgerReconciler(db).delete_expense(expense_id)
    return {"success": True, "message": "Expense deleted successfully"}


# ============================================================================
# Ledger
# ============================================================================

@router.post("/transactions/manual-revenue", status_code=201)
async def create_manual_revenue(payload: ManualRevenueIn, db: AsyncSession = Depends(get_session)):
    """Revenue entry without an order behind it."""
    tx = await LedgerReconciler(db).create_manual_revenue(
        tx_date=payload.date,
        amount=payload.amount,
        description=payload.description,
        client_id=payload.client_id,
        payment_method=payload.payment_method,
        channel=payload.channel,
        notes=payload.notes,
    )
    return {"success": True, "message": "Manual revenue created successfully", "transaction": tx_payload(tx)}


@router.get("/transactions")
async def list_transactions(
    type: Optional[TransactionType] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    rows = await LedgerReconciler(db).list_transactions(
        tx_type=type, start=start, end=end, limit=limit, offset=offset
    )
    return {"success": True, "transactions": [tx_payload(t) for t in rows], "count": len(rows)}


@router.get("/accounting/summary")
async def accounting_summary(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: AsyncSession = Depends(get_session),
):
    """Totals for a period; defaults to the current calendar month."""
    today = utcnow().date()
    start = start or today.replace(day=1)
    end = end or today.replace(day=calendar.monthrange(today.year, today.month)[1])

    summary = await LedgerReconciler(db).summary(start, end)
    return {
        "success": True,
        "summary": {
            **summary,
            "start": summary["start"].isoformat(),
            "end": summary["end"].isoformat(),
            "total_revenue": str(summary["total_revenue"]),
            "total_expenses": str(summary["total_expenses"]),
            "profit_loss": str(summary["profit_loss"]),
            "profit_margin": str(summary["profit_margin"]),
            "expenses_by_category": {k: str(v) for k, v in summary["expenses_by_category"].items()},
            "monthly_trends": [
                {k: (v if k == "month" else str(v)) for k, v in row.items()}
                for row in summary["monthly_trends"]
            ],
        },
    }
