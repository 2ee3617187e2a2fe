from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import StockItem

logger = logging.getLogger(__name__)

STOCK_CATEGORIES: list[str] = [
    'ACESSÓRIOS',
    'AR CONDICIONADO',
    'ARREFECIMENTO',
    'CARROCERIA',
    'ELÉTRICA',
    'FILTROS',
    'FREIOS',
    'IGNIÇÃO',
    'INJEÇÃO ELETRÔNICA',
    'MOTOR',
    'ÓLEOS E FLUIDOS',
    'PNEUS E RODAS',
    'SEGURANÇA',
    'SUSPENSÃO',
    'TRANSMISSÃO',
    'OUTROS',
]


class MovementDirection(str, Enum):
    IN = 'IN'
    OUT = 'OUT'


class StockStatus(str, Enum):
    IN_STOCK = 'EM ESTOQUE'
    LOW_STOCK = 'ESTOQUE BAIXO'
    OUT_OF_STOCK = 'FORA DE ESTOQUE'


class InsufficientStockError(ValueError):
    def __init__(self, *, item_id: int, name: str, requested: int, available: int) -> None:
        self.item_id = item_id
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(
            f'Estoque insuficiente para {name}: necessário {requested}, disponível {available}'
        )


@dataclass(frozen=True)
class StockItemInput:
    code: str
    name: str
    category: str
    quantity: int
    min_quantity: int
    cost_price: Decimal
    sale_price: Decimal


@dataclass(frozen=True)
class MovementResult:
    item_id: int
    direction: MovementDirection
    quantity: int
    quantity_before: int
    quantity_after: int
    reason: str | None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _to_decimal(raw, field: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip().replace(',', '.'))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f'{field} inválido') from exc
    if not value.is_finite():
        raise ValueError(f'{field} inválido')
    if value < 0:
        raise ValueError(f'{field} não pode ser negativo')
    return value.quantize(Decimal('0.01'))


def _to_int(raw, field: str) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f'{field} deve ser um número inteiro') from exc
    if value < 0:
        raise ValueError(f'{field} não pode ser negativa')
    return value


def parse_item_input(form: dict) -> StockItemInput:
    code = str(form.get('code', '')).strip()
    name = str(form.get('name', '')).strip()
    category = str(form.get('category', '')).strip()
    if not code:
        raise ValueError('O código é obrigatório.')
    if not name:
        raise ValueError('O nome é obrigatório.')
    if not category:
        raise ValueError('A categoria é obrigatória.')
    return StockItemInput(
        code=code.upper(),
        name=name,
        category=category,
        quantity=_to_int(form.get('quantity', 0), 'Quantidade'),
        min_quantity=_to_int(form.get('min_quantity', 0), 'Quantidade mínima'),
        cost_price=_to_decimal(form.get('cost_price', 0), 'Preço de custo'),
        sale_price=_to_decimal(form.get('sale_price', 0), 'Preço de venda'),
    )


def stock_status(quantity: int, min_quantity: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= min_quantity:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def list_items(db: Session, *, ctx: WorkshopContext, search: str | None = None) -> list[StockItem]:
    query = select(StockItem).where(StockItem.workshop_id == ctx.workshop_id)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(
            or_(
                StockItem.name.ilike(pattern),
                StockItem.code.ilike(pattern),
                StockItem.category.ilike(pattern),
            )
        )
    return list(db.execute(query.order_by(StockItem.name.asc(), StockItem.id.asc())).scalars().all())


def low_stock_items(db: Session, *, ctx: WorkshopContext) -> list[StockItem]:
    return list(
        db.execute(
            select(StockItem)
            .where(
                StockItem.workshop_id == ctx.workshop_id,
                StockItem.quantity <= StockItem.min_quantity,
            )
            .order_by(StockItem.quantity.asc(), StockItem.name.asc())
        ).scalars().all()
    )


def get_item(db: Session, *, ctx: WorkshopContext, item_id: int) -> StockItem:
    item = db.execute(
        select(StockItem).where(StockItem.id == item_id, StockItem.workshop_id == ctx.workshop_id)
    ).scalar_one_or_none()
    if not item:
        raise LookupError('Item não encontrado')
    return item


def get_items_by_id(db: Session, *, ctx: WorkshopContext, item_ids: list[int]) -> dict[int, StockItem]:
    if not item_ids:
        return {}
    rows = db.execute(
        select(StockItem).where(StockItem.workshop_id == ctx.workshop_id, StockItem.id.in_(item_ids))
    ).scalars().all()
    return {row.id: row for row in rows}


def _ensure_unique_code(db: Session, *, ctx: WorkshopContext, code: str, exclude_id: int | None = None) -> None:
    query = select(StockItem.id).where(StockItem.workshop_id == ctx.workshop_id, StockItem.code == code)
    if exclude_id is not None:
        query = query.where(StockItem.id != exclude_id)
    if db.execute(query).first():
        raise ValueError(f'Já existe um item com o código {code}')


def create_item(db: Session, *, ctx: WorkshopContext, data: StockItemInput) -> StockItem:
    _ensure_unique_code(db, ctx=ctx, code=data.code)
    item = StockItem(
        workshop_id=ctx.workshop_id,
        code=data.code,
        name=data.name,
        category=data.category,
        quantity=data.quantity,
        min_quantity=data.min_quantity,
        cost_price=data.cost_price,
        sale_price=data.sale_price,
    )
    db.add(item)
    db.flush()
    return item


def update_item(db: Session, *, ctx: WorkshopContext, item_id: int, data: StockItemInput) -> StockItem:
    item = get_item(db, ctx=ctx, item_id=item_id)
    _ensure_unique_code(db, ctx=ctx, code=data.code, exclude_id=item.id)
    item.code = data.code
    item.name = data.name
    item.category = data.category
    item.quantity = data.quantity
    item.min_quantity = data.min_quantity
    item.cost_price = data.cost_price
    item.sale_price = data.sale_price
    item.updated_at = _now()
    db.flush()
    return item


def delete_item(db: Session, *, ctx: WorkshopContext, item_id: int) -> StockItem:
    item = get_item(db, ctx=ctx, item_id=item_id)
    db.delete(item)
    db.flush()
    return item


def try_decrement(db: Session, *, ctx: WorkshopContext, item_id: int, quantity: int) -> bool:
    """Decrement only if enough stock remains; a single conditional UPDATE."""
    result = db.execute(
        update(StockItem)
        .where(
            StockItem.id == item_id,
            StockItem.workshop_id == ctx.workshop_id,
            StockItem.quantity >= quantity,
        )
        .values(quantity=StockItem.quantity - quantity, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment(db: Session, *, ctx: WorkshopContext, item_id: int, quantity: int) -> bool:
    result = db.execute(
        update(StockItem)
        .where(StockItem.id == item_id, StockItem.workshop_id == ctx.workshop_id)
        .values(quantity=StockItem.quantity + quantity, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def current_quantity(db: Session, *, ctx: WorkshopContext, item_id: int) -> int:
    quantity = db.execute(
        select(StockItem.quantity).where(StockItem.id == item_id, StockItem.workshop_id == ctx.workshop_id)
    ).scalar_one_or_none()
    if quantity is None:
        raise LookupError('Item não encontrado')
    return quantity


def move_stock(
    db: Session,
    *,
    ctx: WorkshopContext,
    item_id: int,
    direction: MovementDirection | str,
    quantity: int,
    reason: str | None = None,
) -> MovementResult:
    direction = MovementDirection(direction)
    if quantity <= 0:
        raise ValueError('A quantidade deve ser maior que zero.')

    item = get_item(db, ctx=ctx, item_id=item_id)

    if direction == MovementDirection.OUT:
        if not try_decrement(db, ctx=ctx, item_id=item.id, quantity=quantity):
            available = current_quantity(db, ctx=ctx, item_id=item.id)
            logger.warning(
                'stock movement rejected',
                extra={'workshop_id': ctx.workshop_id, 'item_id': item.id, 'requested': quantity, 'available': available},
            )
            raise InsufficientStockError(item_id=item.id, name=item.name, requested=quantity, available=available)
    else:
        increment(db, ctx=ctx, item_id=item.id, quantity=quantity)

    db.refresh(item)
    before = item.quantity + quantity if direction == MovementDirection.OUT else item.quantity - quantity
    logger.info(
        'stock moved',
        extra={
            'workshop_id': ctx.workshop_id,
            'item_id': item.id,
            'direction': direction.value,
            'quantity': quantity,
            'quantity_after': item.quantity,
        },
    )
    return MovementResult(
        item_id=item.id,
        direction=direction,
        quantity=quantity,
        quantity_before=before,
        quantity_after=item.quantity,
        reason=(reason or '').strip() or None,
    )
