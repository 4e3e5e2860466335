# bakery_hub/services/ledger.py
"""
LedgerReconciler - keeps payment state, order totals and client aggregates
consistent with the flat transaction ledger.

Handles:
- one revenue transaction per paid order (idempotent mark paid / unpaid)
- order total = exact sum of item subtotals
- client aggregates derived from the client's orders
- expenses and manual revenue entries
- period summary for the accounting dashboard
"""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.dates import utc_calendar_date
from bakery_hub.db_models import (
    Client, Order, OrderItem, FinancialTransaction,
    TransactionType, SourceType, ExpenseCategory, PaymentMethod, Channel,
)
from bakery_hub.errors import NotFoundError, ValidationError
from bakery_hub.settings import settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT)


def revenue_description(order: Order) -> str:
    if order.order_number:
        return f"Order #{order.order_number} - {order.customer_name}"
    return f"Order - {order.customer_name}"


def parse_expense_category(value: Any) -> ExpenseCategory:
    try:
        return ExpenseCategory(value)
    except ValueError:
        allowed = [c.value for c in ExpenseCategory]
        raise ValidationError(
            f"Invalid category. Must be one of: {', '.join(allowed)}",
            details={"category": value, "allowed": allowed},
        )


def require_positive(amount: Any, field: str = "amount") -> Decimal:
    value = money(amount)
    if value <= 0:
        raise ValidationError("Amount must be greater than 0", details={"field": field, "value": str(amount)})
    return value


class LedgerReconciler:
    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Order revenue
    # =========================================================================

    async def get_order_revenue(self, order_id: int) -> Optional[FinancialTransaction]:
        stmt = select(FinancialTransaction).where(
            FinancialTransaction.source_type == SourceType.order,
            FinancialTransaction.source_id == order_id,
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def mark_paid(self, order: Order) -> FinancialTransaction:
        """
        Ensure the order's revenue transaction exists.

        Idempotent: an existing transaction is returned unchanged, and a
        concurrent insert losing on the unique constraint resolves to the
        winner's row.
        """
        existing = await self.get_order_revenue(order.id)
        if existing:
            logger.info(f"Revenue transaction already exists for order {order.id}")
            return existing

        order_id = order.id
        tx = FinancialTransaction(
            type=TransactionType.revenue,
            transaction_date=utc_calendar_date(order.created_at),
            amount=money(order.total_amount),
            currency=order.currency or settings.DEFAULT_CURRENCY,
            description=revenue_description(order),
            source_type=SourceType.order,
            source_id=order_id,
            client_id=order.client_id,
            payment_method=order.payment_method,
            channel=order.channel or Channel.website,
        )
        self.db.add(tx)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_order_revenue(order_id)
            if existing is None:
                raise
            logger.info(f"Revenue transaction for order {order_id} was created concurrently")
            return existing

        logger.info(f"Revenue transaction created for order {order_id}: {tx.amount} {tx.currency}")
        return tx

    async def mark_unpaid(self, order_id: int) -> bool:
        """Remove the order's revenue transaction if there is one."""
        removed = await self.remove_order_revenue(order_id)
        await self.db.commit()
        if removed:
            logger.info(f"Revenue transaction removed for order {order_id}")
        return removed

    async def remove_order_revenue(self, order_id: int) -> bool:
        """Delete the order's revenue row without committing (cascade helper)."""
        result = await self.db.execute(
            delete(FinancialTransaction).where(
                FinancialTransaction.source_type == SourceType.order,
                FinancialTransaction.source_id == order_id,
            )
        )
        return (result.rowcount or 0) > 0

    async def sync_revenue_amount(self, order: Order) -> Optional[FinancialTransaction]:
        """Make a paid order's revenue amount follow its current total."""
        tx = await self.get_order_revenue(order.id)
        if tx is None:
            return None
        total = money(order.total_amount)
        if money(tx.amount) != total:
            logger.info(f"Revenue for order {order.id} adjusted {tx.amount} -> {total}")
            tx.amount = total
            tx.description = revenue_description(order)
            await self.db.commit()
        return tx

    # =========================================================================
    # Totals
    # =========================================================================

    async def recompute_order_total(self, order: Order) -> Decimal:
        """
        Set ``order.total_amount`` to the sum of its item subtotals.

        Runs inside the caller's transaction (after it locked the order row)
        and does not commit.
        """
        await self.db.flush()
        total = await self.db.scalar(
            select(func.coalesce(func.sum(OrderItem.subtotal), 0)).where(OrderItem.order_id == order.id)
        )
        order.total_amount = money(total)
        return order.total_amount

    # =========================================================================
    # Client aggregates
    # =========================================================================

    async def recompute_client_stats(self, client_id: Optional[int]) -> Optional[Client]:
        if client_id is None:
            return None
        client = await self.db.get(Client, client_id)
        if client is None:
            logger.warning(f"Client {client_id} not found while recomputing stats")
            return None

        row = (await self.db.execute(
            select(
                func.count(Order.id),
                func.coalesce(func.sum(Order.total_amount), 0),
                func.min(Order.created_at),
                func.max(Order.created_at),
            ).where(Order.client_id == client_id)
        )).one()
        count, spent, first_at, last_at = row

        client.total_orders = int(count or 0)
        client.total_spent = money(spent)
        client.first_order_date = utc_calendar_date(first_at) if first_at else None
        client.last_order_date = utc_calendar_date(last_at) if last_at else None
        await self.db.commit()
        return client

    # =========================================================================
    # Expenses & manual revenue
    # =========================================================================

    async def create_expense(
        self,
        *,
        tx_date: date,
        category: Any,
        amount: Any,
        description: str,
        currency: Optional[str] = None,
        notes: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> FinancialTransaction:
        cat = parse_expense_category(category)
        value = require_positive(amount)
        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required", details={"field": "description"})

        tx = FinancialTransaction(
            type=TransactionType.expense,
            transaction_date=tx_date,
            amount=value,
            currency=currency or settings.DEFAULT_CURRENCY,
            description=description,
            source_type=SourceType.manual,
            expense_category=cat,
            receipt_url=receipt_url,
            notes=(notes or "").strip() or None,
        )
        self.db.add(tx)
        await self.db.commit()
        logger.info(f"Expense created: {value} {tx.currency} - {cat.value} - {description}")
        return tx

    async def _get_expense(self, expense_id: int) -> FinancialTransaction:
        tx = await self.db.get(FinancialTransaction, expense_id)
        if tx is None or tx.type != TransactionType.expense:
            raise NotFoundError("Expense not found", details={"expense_id": expense_id})
        return tx

    async def update_expense(
        self,
        expense_id: int,
        *,
        tx_date: date,
        category: Any,
        amount: Any,
        description: str,
        currency: Optional[str] = None,
        notes: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> FinancialTransaction:
        cat = parse_expense_category(category)
        value = require_positive(amount)
        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required", details={"field": "description"})

        tx = await self._get_expense(expense_id)
        tx.transaction_date = tx_date
        tx.expense_category = cat
        tx.amount = value
        tx.description = description
        if currency:
            tx.currency = currency
        tx.notes = (notes or "").strip() or None
        tx.receipt_url = receipt_url
        await self.db.commit()
        return tx

    async def delete_expense(self, expense_id: int) -> None:
        tx = await self._get_expense(expense_id)
        await self.db.delete(tx)
        await self.db.commit()
        logger.info(f"Expense {expense_id} deleted")

    async def create_manual_revenue(
        self,
        *,
        tx_date: date,
        amount: Any,
        description: str,
        client_id: Optional[int] = None,
        payment_method: Optional[PaymentMethod] = None,
        channel: Channel = Channel.other,
        notes: Optional[str] = None,
    ) -> FinancialTransaction:
        """Revenue not tied to an order (e.g. a monthly wholesale total)."""
        value = require_positive(amount)
        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required", details={"field": "description"})
        if client_id is not None and await self.db.get(Client, client_id) is None:
            raise NotFoundError("Client not found", details={"client_id": client_id})

        tx = FinancialTransaction(
            type=TransactionType.revenue,
            transaction_date=tx_date,
            amount=value,
            currency=settings.DEFAULT_CURRENCY,
            description=description,
            source_type=SourceType.manual,
            client_id=client_id,
            payment_method=payment_method,
            channel=channel,
            notes=(notes or "").strip() or None,
        )
        self.db.add(tx)
        await self.db.commit()
        logger.info(f"Manual revenue created: {value} {tx.currency} - {description}")
        return tx

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_transactions(
        self,
        tx_type: Optional[TransactionType] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        category: Optional[ExpenseCategory] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[FinancialTransaction]:
        stmt = select(FinancialTransaction)
        if tx_type is not None:
            stmt = stmt.where(FinancialTransaction.type == tx_type)
        if category is not None:
            stmt = stmt.where(FinancialTransaction.expense_category == category)
        if start is not None:
            stmt = stmt.where(FinancialTransaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(FinancialTransaction.transaction_date <= end)
        stmt = stmt.order_by(
            FinancialTransaction.transaction_date.desc(), FinancialTransaction.id.desc()
        ).limit(limit).offset(offset)
        return list((await self.db.execute(stmt)).scalars().all())

    async def summary(self, start: date, end: date) -> Dict[str, Any]:
        """Revenue, expenses and profit for [start, end], plus a monthly trend."""
        if start > end:
            raise ValidationError("start must not be after end", details={"start": str(start), "end": str(end)})

        rows = await self.list_transactions(start=start, end=end, limit=100_000)

        revenue = Decimal("0")
        expenses = Decimal("0")
        revenue_count = 0
        by_category: Dict[str, Decimal] = defaultdict(Decimal)
        monthly: Dict[str, Dict[str, Decimal]] = defaultdict(
            lambda: {"revenue": Decimal("0"), "expenses": Decimal("0")}
        )

        for tx in rows:
            month = tx.transaction_date.strftime("%Y-%m")
            amount = money(tx.amount)
            if tx.type == TransactionType.revenue:
                revenue += amount
                revenue_count += 1
                monthly[month]["revenue"] += amount
            else:
                expenses += amount
                cat = tx.expense_category.value if tx.expense_category else ExpenseCategory.other.value
                by_category[cat] += amount
                monthly[month]["expenses"] += amount

        profit = revenue - expenses
        margin = (profit / revenue * 100).quantize(CENT) if revenue > 0 else Decimal("0.00")

        return {
            "start": start,
            "end": end,
            "total_revenue": revenue,
            "total_expenses": expenses,
            "profit_loss": profit,
            "profit_margin": margin,
            "revenue_transactions": revenue_count,
            "expenses_by_category": dict(sorted(by_category.items())),
            "monthly_trends": [
                {
                    "month": month,
                    "revenue": data["revenue"],
                    "expenses": data["expenses"],
                    "profit": data["revenue"] - data["expenses"],
                }
                for month, data in sorted(monthly.items())
            ],
        }
