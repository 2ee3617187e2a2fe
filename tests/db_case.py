from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import Base, Mechanic, StockItem, UserRole, Workshop


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory SQLite schema with one workshop per test."""

    def setUp(self) -> None:
        self.engine = create_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.db = Session(self.engine, autoflush=False, expire_on_commit=False)
        self.workshop = self.add_workshop('Oficina Teste')
        self.ctx = WorkshopContext(workshop_id=self.workshop.id, actor_id=None, role=UserRole.ADMIN)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def add_workshop(self, name: str) -> Workshop:
        now = datetime.now(tz=timezone.utc)
        workshop = Workshop(name=name, created_at=now, updated_at=now)
        self.db.add(workshop)
        self.db.flush()
        return workshop

    def add_item(
        self,
        code: str,
        quantity: int,
        *,
        sale_price: str = '10.00',
        min_quantity: int = 0,
        workshop_id: int | None = None,
    ) -> StockItem:
        item = StockItem(
            workshop_id=workshop_id or self.workshop.id,
            code=code,
            name=f'Peça {code}',
            category='OUTROS',
            quantity=quantity,
            min_quantity=min_quantity,
            cost_price=Decimal('5.00'),
            sale_price=Decimal(sale_price),
        )
        self.db.add(item)
        self.db.flush()
        return item

    def add_mechanic(self, name: str = 'Carlos', specialty: str = 'Motor') -> Mechanic:
        mechanic = Mechanic(workshop_id=self.workshop.id, name=name, specialty=specialty)
        self.db.add(mechanic)
        self.db.flush()
        return mechanic

    def quantity_of(self, item: StockItem) -> int:
        self.db.expire(item)
        return item.quantity


def order_form(**overrides) -> dict:
    form = {
        'customer': 'João da Silva',
        'customer_document_type': 'CPF',
        'customer_document': '123.456.789-09',
        'customer_phone': '(11) 99999-0000',
        'vehicle_make': 'Volkswagen',
        'vehicle_model': 'Gol',
        'vehicle_year': '2018',
        'vehicle_plate': 'ABC-1D23',
        'vehicle_color': 'Prata',
        'start_date': date.today().isoformat(),
        'status': 'PENDENTE',
    }
    form.update(overrides)
    return form
