from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from db_case import DatabaseTestCase, order_form
from sqlalchemy import delete, select

from oficina.models import FinancialTransaction, OrderStatus, ReferenceType, StockItem, TransactionType
from oficina.services import order_service
from oficina.services.order_service import (
    PartLine,
    clamp_discount_percent,
    compute_total,
    merge_parts,
    parse_order_input,
    record_payment,
    save_order,
)


def _with_part(item_id: int, quantity: int, **overrides) -> dict:
    return order_form(part_item_id__0=str(item_id), part_quantity__0=str(quantity), **overrides)


class ParseOrderInputTests(unittest.TestCase):
    def test_plate_is_normalised(self) -> None:
        data = parse_order_input(order_form(vehicle_plate='abc-1234'))
        self.assertEqual(data.vehicle_plate, 'ABC1234')

    def test_invalid_plate_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_order_input(order_form(vehicle_plate='AB12345'))

    def test_cpf_must_have_eleven_digits(self) -> None:
        with self.assertRaises(ValueError):
            parse_order_input(order_form(customer_document='123'))

    def test_cnpj_must_have_fourteen_digits(self) -> None:
        data = parse_order_input(order_form(customer_document_type='CNPJ', customer_document='12.345.678/0001-90'))
        self.assertEqual(data.customer_document, '12345678000190')

    def test_services_and_parts_are_read_from_indexed_fields(self) -> None:
        data = parse_order_input(
            order_form(
                service_description__0='Troca de óleo',
                service_quantity__0='2',
                service_unit_price__0='50,00',
                service_description__1='',
                service_unit_price__1='',
                part_item_id__0='7',
                part_quantity__0='1',
                part_item_id__1='7',
                part_quantity__1='2',
                part_item_id__2='',
            )
        )
        self.assertEqual(len(data.services), 1)
        self.assertEqual(data.services[0].amount, Decimal('100.00'))
        self.assertEqual(data.parts, [PartLine(item_id=7, quantity=3)])
        self.assertIsNone(data.total)

    def test_blank_customer_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_order_input(order_form(customer='  '))

    def test_non_finite_amounts_are_rejected(self) -> None:
        for raw in ('nan', 'inf', '-Infinity'):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_order_input(order_form(total=raw))
                with self.assertRaises(ValueError):
                    parse_order_input(order_form(service_description__0='Alinhamento', service_unit_price__0=raw))


class OrderMathTests(unittest.TestCase):
    def test_merge_parts_sums_quantities_for_same_item(self) -> None:
        merged = merge_parts([PartLine(item_id=1, quantity=1)], [PartLine(item_id=1, quantity=2), PartLine(item_id=2, quantity=1)])
        self.assertEqual([(p.item_id, p.quantity) for p in merged], [(1, 3), (2, 1)])

    def test_compute_total_adds_services_and_parts(self) -> None:
        total = compute_total(
            [order_service.ServiceLine(description='Mão de obra', quantity=1, unit_price=Decimal('80'))],
            [PartLine(item_id=1, quantity=2, code='P', name='P', sale_price=Decimal('12.50'))],
        )
        self.assertEqual(total, Decimal('105.00'))

    def test_discount_clamp(self) -> None:
        self.assertEqual(clamp_discount_percent('15'), (Decimal('10'), True))
        self.assertEqual(clamp_discount_percent('-5'), (Decimal('0'), False))
        self.assertEqual(clamp_discount_percent('7.5'), (Decimal('7.5'), False))
        self.assertEqual(clamp_discount_percent(''), (Decimal('0'), False))

    def test_non_finite_discount_is_rejected(self) -> None:
        for raw in ('nan', 'inf', 'sNaN'):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    clamp_discount_percent(raw)


class SaveOrderCompletionTests(DatabaseTestCase):
    def test_completion_decrements_then_second_order_is_short(self) -> None:
        item = self.add_item('I1', 5)

        first = save_order(self.db, ctx=self.ctx, data=parse_order_input(_with_part(item.id, 3)))
        self.assertEqual(self.quantity_of(item), 5)
        result = save_order(
            self.db,
            ctx=self.ctx,
            data=parse_order_input(_with_part(item.id, 3, status='CONCLUÍDO')),
            order_id=first.order.id,
        )
        self.assertTrue(result.stock_applied)
        self.assertEqual(self.quantity_of(item), 2)

        second = save_order(self.db, ctx=self.ctx, data=parse_order_input(_with_part(item.id, 3, status='CONCLUÍDO')))
        self.assertFalse(second.stock_applied)
        self.assertEqual(len(second.shortages), 1)
        self.assertEqual(second.shortages[0].item_id, item.id)
        self.assertEqual(second.shortages[0].required, 3)
        self.assertEqual(second.shortages[0].available, 2)
        self.assertEqual(second.order.status, OrderStatus.CONCLUIDO)
        self.assertEqual(self.quantity_of(item), 2)

    def test_shortage_on_one_part_mutates_no_item(self) -> None:
        plenty = self.add_item('A', 10)
        scarce = self.add_item('B', 1)
        form = order_form(
            status='CONCLUÍDO',
            part_item_id__0=str(plenty.id),
            part_quantity__0='4',
            part_item_id__1=str(scarce.id),
            part_quantity__1='2',
        )
        result = save_order(self.db, ctx=self.ctx, data=parse_order_input(form))
        self.assertEqual([s.item_id for s in result.shortages], [scarce.id])
        self.assertEqual(self.quantity_of(plenty), 10)
        self.assertEqual(self.quantity_of(scarce), 1)

    def test_saving_an_already_completed_order_does_not_decrement_again(self) -> None:
        item = self.add_item('I1', 5)
        created = save_order(self.db, ctx=self.ctx, data=parse_order_input(_with_part(item.id, 2, status='CONCLUÍDO')))
        self.assertEqual(self.quantity_of(item), 3)
        again = save_order(
            self.db,
            ctx=self.ctx,
            data=parse_order_input(_with_part(item.id, 2, status='CONCLUÍDO')),
            order_id=created.order.id,
        )
        self.assertFalse(again.stock_applied)
        self.assertEqual(self.quantity_of(item), 3)

    def test_lost_race_puts_back_applied_decrements(self) -> None:
        first = self.add_item('A', 5)
        second = self.add_item('B', 5)
        form = order_form(
            status='CONCLUÍDO',
            part_item_id__0=str(first.id),
            part_quantity__0='2',
            part_item_id__1=str(second.id),
            part_quantity__1='2',
        )
        real_decrement = order_service.inventory_service.try_decrement

        def lose_on_second(db, *, ctx, item_id, quantity):
            if item_id == second.id:
                return False
            return real_decrement(db, ctx=ctx, item_id=item_id, quantity=quantity)

        with patch('oficina.services.order_service.inventory_service.try_decrement', side_effect=lose_on_second):
            result = save_order(self.db, ctx=self.ctx, data=parse_order_input(form))

        self.assertFalse(result.stock_applied)
        self.assertEqual([s.item_id for s in result.shortages], [second.id])
        self.assertEqual(self.quantity_of(first), 5)
        self.assertEqual(self.quantity_of(second), 5)
        self.assertEqual(result.order.status, OrderStatus.CONCLUIDO)

    def test_item_deleted_during_completion_is_reported_short(self) -> None:
        kept = self.add_item('A', 5)
        removed = self.add_item('B', 5)
        form = order_form(
            status='CONCLUÍDO',
            part_item_id__0=str(kept.id),
            part_quantity__0='1',
            part_item_id__1=str(removed.id),
            part_quantity__1='1',
        )
        real_decrement = order_service.inventory_service.try_decrement

        def delete_then_decrement(db, *, ctx, item_id, quantity):
            if item_id == removed.id:
                db.execute(
                    delete(StockItem).where(StockItem.id == removed.id).execution_options(synchronize_session=False)
                )
            return real_decrement(db, ctx=ctx, item_id=item_id, quantity=quantity)

        with patch('oficina.services.order_service.inventory_service.try_decrement', side_effect=delete_then_decrement):
            result = save_order(self.db, ctx=self.ctx, data=parse_order_input(form))

        self.assertFalse(result.stock_applied)
        self.assertEqual([(s.item_id, s.available) for s in result.shortages], [(removed.id, 0)])
        self.assertEqual(self.quantity_of(kept), 5)
        self.assertIsNotNone(result.order.id)
        self.assertEqual(result.order.status, OrderStatus.CONCLUIDO)

    def test_display_ids_are_sequential_per_workshop(self) -> None:
        a = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form()))
        b = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form()))
        self.assertEqual((a.order.display_id, b.order.display_id), ('0001', '0002'))

    def test_part_snapshot_taken_from_stock(self) -> None:
        item = self.add_item('I1', 5, sale_price='30.00')
        result = save_order(self.db, ctx=self.ctx, data=parse_order_input(_with_part(item.id, 2)))
        _, parts = order_service.get_order_lines(self.db, order_id=result.order.id)
        self.assertEqual(parts[0].code, 'I1')
        self.assertEqual(result.order.total, Decimal('60.00'))

    def test_manual_total_overrides_computed_total(self) -> None:
        item = self.add_item('I1', 5, sale_price='30.00')
        result = save_order(self.db, ctx=self.ctx, data=parse_order_input(_with_part(item.id, 2, total='75,00')))
        self.assertEqual(result.order.total, Decimal('75.00'))

    def test_mechanic_name_is_snapshotted(self) -> None:
        mechanic = self.add_mechanic('Ana')
        result = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form(mechanic_id=str(mechanic.id))))
        self.assertEqual(result.order.mechanic_name, 'Ana')

    def test_finalizado_cannot_be_chosen_on_save(self) -> None:
        with self.assertRaises(ValueError):
            save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form(status='FINALIZADO')))


class RecordPaymentTests(DatabaseTestCase):
    def _order_worth(self, amount: str):
        return save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form(total=amount))).order

    def test_discount_above_maximum_is_clamped_with_warning(self) -> None:
        order = self._order_worth('200.00')
        result = record_payment(self.db, ctx=self.ctx, order_id=order.id, payment_method='PIX', discount_percent='25')
        self.assertEqual(result.discount_percent, Decimal('10'))
        self.assertEqual(result.final_total, Decimal('180.00'))
        self.assertEqual(len(result.warnings), 1)
        self.assertEqual(result.transaction.value, Decimal('180.00'))
        self.assertEqual(result.transaction.type, TransactionType.IN)
        self.assertEqual(result.transaction.reference_type, ReferenceType.OS)
        self.assertEqual(result.transaction.reference_id, order.id)
        self.assertEqual(result.order.status, OrderStatus.FINALIZADO)
        self.assertEqual(result.order.subtotal, Decimal('200.00'))

    def test_paying_twice_writes_two_transactions(self) -> None:
        order = self._order_worth('100.00')
        record_payment(self.db, ctx=self.ctx, order_id=order.id, payment_method='DINHEIRO', discount_percent='0')
        record_payment(self.db, ctx=self.ctx, order_id=order.id, payment_method='DINHEIRO', discount_percent='0')
        rows = self.db.execute(
            select(FinancialTransaction).where(FinancialTransaction.reference_id == order.id)
        ).scalars().all()
        self.assertEqual(len(rows), 2)

    def test_unknown_payment_method_is_rejected(self) -> None:
        order = self._order_worth('100.00')
        with self.assertRaises(ValueError):
            record_payment(self.db, ctx=self.ctx, order_id=order.id, payment_method='CHEQUE', discount_percent='0')

    def test_paid_order_cannot_be_edited_or_deleted(self) -> None:
        order = self._order_worth('100.00')
        record_payment(self.db, ctx=self.ctx, order_id=order.id, payment_method='PIX', discount_percent='0')
        with self.assertRaises(ValueError):
            save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form()), order_id=order.id)
        with self.assertRaises(ValueError):
            order_service.delete_order(self.db, ctx=self.ctx, order_id=order.id)


class OrderLookupTests(DatabaseTestCase):
    def test_find_by_display_id_pads_digits(self) -> None:
        created = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form()))
        found = order_service.find_by_display_id(self.db, ctx=self.ctx, raw='#1')
        self.assertEqual(found.id, created.order.id)

    def test_find_by_display_id_requires_digits(self) -> None:
        with self.assertRaises(ValueError):
            order_service.find_by_display_id(self.db, ctx=self.ctx, raw='abc')

    def test_find_by_display_id_missing(self) -> None:
        with self.assertRaises(LookupError):
            order_service.find_by_display_id(self.db, ctx=self.ctx, raw='42')


if __name__ == '__main__':
    unittest.main()
