from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import FinancialTransaction, OrderStatus, ServiceOrder, TransactionType

MONTH_LABELS = ['Jan', 'Fev', 'Mar', 'Abr', 'Mai', 'Jun', 'Jul', 'Ago', 'Set', 'Out', 'Nov', 'Dez']


@dataclass(frozen=True)
class MonthBucket:
    year: int
    month: int

    @property
    def label(self) -> str:
        return MONTH_LABELS[self.month - 1]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_date(value: date | datetime | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _in_month(value: date | datetime | None, year: int, month: int) -> bool:
    day = _as_date(value)
    return day is not None and day.year == year and day.month == month


def _type_of(tx) -> TransactionType:
    return TransactionType(tx.type)


def trailing_months(now: datetime | date, months: int = 6) -> list[MonthBucket]:
    """Calendar months ending with the one containing ``now``, oldest first."""
    year, month = now.year, now.month
    buckets: list[MonthBucket] = []
    for _ in range(months):
        buckets.append(MonthBucket(year=year, month=month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(buckets))


def monthly_revenue(transactions: Iterable, now: datetime | date) -> Decimal:
    return sum(
        (Decimal(tx.value) for tx in transactions if _type_of(tx) == TransactionType.IN and _in_month(tx.date, now.year, now.month)),
        Decimal('0'),
    )


def monthly_expenses(transactions: Iterable, now: datetime | date) -> Decimal:
    return sum(
        (Decimal(tx.value) for tx in transactions if _type_of(tx) == TransactionType.OUT and _in_month(tx.date, now.year, now.month)),
        Decimal('0'),
    )


def total_balance(transactions: Iterable) -> Decimal:
    balance = Decimal('0')
    for tx in transactions:
        if tx.date is None:
            continue
        if _type_of(tx) == TransactionType.IN:
            balance += Decimal(tx.value)
        else:
            balance -= Decimal(tx.value)
    return balance


def net_profit(revenue: Decimal, expenses: Decimal) -> Decimal:
    return revenue - expenses


def active_customers(orders: Iterable, now: datetime | date) -> int:
    return len({order.customer.strip().upper() for order in orders if _in_month(order.start_date, now.year, now.month)})


def services_this_month(orders: Iterable, now: datetime | date) -> int:
    return sum(1 for order in orders if _in_month(order.start_date, now.year, now.month))


def vehicles_in_progress(orders: Iterable) -> int:
    return sum(1 for order in orders if OrderStatus(order.status) == OrderStatus.EM_ANDAMENTO)


def orders_per_month(orders: Iterable, now: datetime | date, months: int = 6) -> list[dict]:
    buckets = trailing_months(now, months)
    counts = {(bucket.year, bucket.month): 0 for bucket in buckets}
    for order in orders:
        day = _as_date(order.start_date)
        if day is not None and (day.year, day.month) in counts:
            counts[(day.year, day.month)] += 1
    return [{'month': bucket.label, 'services': counts[(bucket.year, bucket.month)]} for bucket in buckets]


def cashflow_per_month(transactions: Iterable, now: datetime | date, months: int = 6) -> list[dict]:
    buckets = trailing_months(now, months)
    totals = {(bucket.year, bucket.month): [Decimal('0'), Decimal('0')] for bucket in buckets}
    for tx in transactions:
        day = _as_date(tx.date)
        if day is None or (day.year, day.month) not in totals:
            continue
        slot = 0 if _type_of(tx) == TransactionType.IN else 1
        totals[(day.year, day.month)][slot] += Decimal(tx.value)
    return [
        {
            'month': bucket.label,
            'entradas': totals[(bucket.year, bucket.month)][0],
            'saidas': totals[(bucket.year, bucket.month)][1],
        }
        for bucket in buckets
    ]


def _load_orders(db: Session, ctx: WorkshopContext) -> list:
    return db.execute(
        select(ServiceOrder.customer, ServiceOrder.start_date, ServiceOrder.status).where(
            ServiceOrder.workshop_id == ctx.workshop_id
        )
    ).all()


def _load_transactions(db: Session, ctx: WorkshopContext) -> list:
    return db.execute(
        select(FinancialTransaction.type, FinancialTransaction.value, FinancialTransaction.date).where(
            FinancialTransaction.workshop_id == ctx.workshop_id
        )
    ).all()


def build_dashboard(db: Session, *, ctx: WorkshopContext, now: datetime | None = None) -> dict:
    now = now or _now()
    orders = _load_orders(db, ctx)
    transactions = _load_transactions(db, ctx)
    return {
        'monthly_revenue': monthly_revenue(transactions, now),
        'active_customers': active_customers(orders, now),
        'services_this_month': services_this_month(orders, now),
        'vehicles_in_progress': vehicles_in_progress(orders),
        'orders_chart': orders_per_month(orders, now),
    }


def build_financial_overview(db: Session, *, ctx: WorkshopContext, now: datetime | None = None) -> dict:
    now = now or _now()
    transactions = _load_transactions(db, ctx)
    revenue = monthly_revenue(transactions, now)
    expenses = monthly_expenses(transactions, now)
    return {
        'monthly_revenue': revenue,
        'monthly_expenses': expenses,
        'monthly_net_profit': net_profit(revenue, expenses),
        'total_balance': total_balance(transactions),
        'cashflow_chart': cashflow_per_month(transactions, now),
    }
