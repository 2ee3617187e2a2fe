from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from oficina.models import OrderStatus, TransactionType
from oficina.services.dashboard_service import (
    active_customers,
    cashflow_per_month,
    monthly_expenses,
    monthly_revenue,
    orders_per_month,
    services_this_month,
    total_balance,
    trailing_months,
    vehicles_in_progress,
)

NOW = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)


def tx(tx_type: TransactionType, value: str, when: datetime) -> SimpleNamespace:
    return SimpleNamespace(type=tx_type, value=Decimal(value), date=when)


def order(customer: str, start: date, status: OrderStatus = OrderStatus.PENDENTE) -> SimpleNamespace:
    return SimpleNamespace(customer=customer, start_date=start, status=status)


class LedgerAggregationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transactions = [
            tx(TransactionType.IN, '100', datetime(2024, 3, 2, 12, tzinfo=timezone.utc)),
            tx(TransactionType.IN, '50', datetime(2024, 2, 20, 12, tzinfo=timezone.utc)),
            tx(TransactionType.OUT, '30', datetime(2024, 3, 5, 12, tzinfo=timezone.utc)),
        ]

    def test_monthly_revenue_counts_only_income_of_current_month(self) -> None:
        self.assertEqual(monthly_revenue(self.transactions, NOW), Decimal('100'))

    def test_monthly_expenses(self) -> None:
        self.assertEqual(monthly_expenses(self.transactions, NOW), Decimal('30'))

    def test_total_balance_spans_all_months(self) -> None:
        self.assertEqual(total_balance(self.transactions), Decimal('120'))

    def test_cashflow_chart_is_zero_filled_oldest_first(self) -> None:
        chart = cashflow_per_month(self.transactions, NOW)
        self.assertEqual([row['month'] for row in chart], ['Out', 'Nov', 'Dez', 'Jan', 'Fev', 'Mar'])
        self.assertEqual(chart[-1]['entradas'], Decimal('100'))
        self.assertEqual(chart[-1]['saidas'], Decimal('30'))
        self.assertEqual(chart[-2]['entradas'], Decimal('50'))
        self.assertEqual(chart[0]['entradas'], Decimal('0'))


class OrderAggregationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.orders = [
            order('Maria', date(2024, 3, 1), OrderStatus.EM_ANDAMENTO),
            order('maria ', date(2024, 3, 10)),
            order('Pedro', date(2024, 3, 12), OrderStatus.EM_ANDAMENTO),
            order('Lucas', date(2024, 1, 5), OrderStatus.FINALIZADO),
            order('Ana', date(2023, 9, 30)),
        ]

    def test_active_customers_are_distinct_names_this_month(self) -> None:
        self.assertEqual(active_customers(self.orders, NOW), 2)

    def test_services_this_month(self) -> None:
        self.assertEqual(services_this_month(self.orders, NOW), 3)

    def test_vehicles_in_progress(self) -> None:
        self.assertEqual(vehicles_in_progress(self.orders), 2)

    def test_orders_per_month_ignores_orders_outside_window(self) -> None:
        chart = orders_per_month(self.orders, NOW)
        self.assertEqual([row['services'] for row in chart], [0, 0, 0, 1, 0, 3])


class TrailingMonthsTests(unittest.TestCase):
    def test_wraps_year_boundary(self) -> None:
        buckets = trailing_months(date(2024, 2, 1), months=3)
        self.assertEqual([(b.year, b.month) for b in buckets], [(2023, 12), (2024, 1), (2024, 2)])


if __name__ == '__main__':
    unittest.main()
