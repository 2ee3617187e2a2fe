from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.config import settings
from oficina.models import (
    DocumentType,
    FinancialTransaction,
    OrderStatus,
    ReferenceType,
    ServiceOrder,
    ServiceOrderPart,
    ServiceOrderService,
    Workshop,
)
from oficina.services import inventory_service
from oficina.services.ledger_service import record_income
from oficina.services.mechanic_service import get_mechanic

logger = logging.getLogger(__name__)

PLATE_RE = re.compile(r'^[A-Z]{3}[0-9][A-Z0-9][0-9]{2}$')
PAYMENT_METHODS: list[str] = ['DINHEIRO', 'PIX', 'CARTÃO DE DÉBITO', 'CARTÃO DE CRÉDITO']
EDITABLE_STATUSES: list[OrderStatus] = [OrderStatus.PENDENTE, OrderStatus.EM_ANDAMENTO, OrderStatus.CONCLUIDO]
CENT = Decimal('0.01')


@dataclass(frozen=True)
class ServiceLine:
    description: str
    quantity: int
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


@dataclass(frozen=True)
class PartLine:
    item_id: int
    quantity: int
    code: str | None = None
    name: str | None = None
    sale_price: Decimal | None = None

    @property
    def has_snapshot(self) -> bool:
        return self.code is not None and self.name is not None and self.sale_price is not None

    @property
    def amount(self) -> Decimal:
        return ((self.sale_price or Decimal('0')) * self.quantity).quantize(CENT)


@dataclass(frozen=True)
class OrderInput:
    customer: str
    vehicle_make: str
    vehicle_model: str
    vehicle_year: int
    vehicle_plate: str
    vehicle_color: str
    start_date: date
    status: OrderStatus = OrderStatus.PENDENTE
    customer_document_type: DocumentType = DocumentType.CPF
    customer_document: str | None = None
    customer_phone: str | None = None
    mechanic_id: int | None = None
    symptoms: str | None = None
    diagnosis: str | None = None
    services: list[ServiceLine] = field(default_factory=list)
    parts: list[PartLine] = field(default_factory=list)
    total: Decimal | None = None


@dataclass(frozen=True)
class StockShortage:
    item_id: int
    name: str
    required: int
    available: int

    @property
    def message(self) -> str:
        return f'Estoque insuficiente para {self.name}: necessário {self.required}, disponível {self.available}.'


@dataclass(frozen=True)
class SaveOrderResult:
    order: ServiceOrder
    created: bool
    stock_applied: bool
    shortages: list[StockShortage]

    @property
    def completed_now(self) -> bool:
        return self.stock_applied or bool(self.shortages)


@dataclass(frozen=True)
class PaymentResult:
    order: ServiceOrder
    transaction: FinancialTransaction
    discount_percent: Decimal
    discount_value: Decimal
    final_total: Decimal
    warnings: list[str]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _digits(value: str) -> str:
    return re.sub(r'\D', '', value or '')


def _parse_money(raw, label: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip().replace(',', '.'))
    except InvalidOperation as exc:
        raise ValueError(f'{label} inválido.') from exc
    if not value.is_finite():
        raise ValueError(f'{label} inválido.')
    if value < 0:
        raise ValueError(f'{label} não pode ser negativo.')
    return value.quantize(CENT)


def _parse_positive_int(raw, label: str) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f'{label} deve ser um número inteiro.') from exc
    if value < 1:
        raise ValueError(f'{label} deve ser pelo menos 1.')
    return value


def _indexed_fields(form: dict, prefix: str) -> dict[int, dict[str, str]]:
    rows: dict[int, dict[str, str]] = {}
    for key, value in form.items():
        if not key.startswith(prefix):
            continue
        name, _, index = key[len(prefix):].partition('__')
        if not index.isdigit():
            continue
        rows.setdefault(int(index), {})[name] = str(value).strip()
    return dict(sorted(rows.items()))


def merge_parts(existing: list[PartLine], new: list[PartLine]) -> list[PartLine]:
    """Adding an item already on the order sums quantities instead of adding a row."""
    merged: list[PartLine] = list(existing)
    for part in new:
        for index, current in enumerate(merged):
            if current.item_id == part.item_id:
                merged[index] = replace(current, quantity=current.quantity + part.quantity)
                break
        else:
            merged.append(part)
    return merged


def parse_order_input(form: dict) -> OrderInput:
    customer = str(form.get('customer', '')).strip()
    if not customer:
        raise ValueError('O nome do cliente é obrigatório.')

    raw_doc_type = str(form.get('customer_document_type', 'CPF')).strip().upper() or 'CPF'
    try:
        doc_type = DocumentType(raw_doc_type)
    except ValueError as exc:
        raise ValueError('Tipo de documento inválido.') from exc
    document = _digits(str(form.get('customer_document', '')))
    if document:
        if doc_type == DocumentType.CPF and len(document) != 11:
            raise ValueError('CPF inválido. Deve conter 11 dígitos.')
        if doc_type == DocumentType.CNPJ and len(document) != 14:
            raise ValueError('CNPJ inválido. Deve conter 14 dígitos.')

    make = str(form.get('vehicle_make', '')).strip()
    model = str(form.get('vehicle_model', '')).strip()
    color = str(form.get('vehicle_color', '')).strip()
    if not make:
        raise ValueError('A marca do veículo é obrigatória.')
    if not model:
        raise ValueError('O modelo do veículo é obrigatório.')
    if not color:
        raise ValueError('A cor do veículo é obrigatória.')

    try:
        year = int(str(form.get('vehicle_year', '')).strip())
    except ValueError as exc:
        raise ValueError('Ano do veículo inválido.') from exc
    if year < 1900 or year > date.today().year + 1:
        raise ValueError('Ano do veículo inválido.')

    plate = str(form.get('vehicle_plate', '')).strip().upper().replace('-', '')
    if not PLATE_RE.match(plate):
        raise ValueError('Placa inválida. Use o formato ABC1234 ou ABC1D23.')

    raw_start = str(form.get('start_date', '')).strip()
    if not raw_start:
        raise ValueError('A data de início é obrigatória.')
    try:
        start_date = date.fromisoformat(raw_start)
    except ValueError as exc:
        raise ValueError('Data de início inválida.') from exc

    raw_status = str(form.get('status', OrderStatus.PENDENTE.value)).strip() or OrderStatus.PENDENTE.value
    try:
        status = OrderStatus(raw_status)
    except ValueError as exc:
        raise ValueError('Status inválido.') from exc

    raw_mechanic = str(form.get('mechanic_id', '')).strip()
    mechanic_id = int(raw_mechanic) if raw_mechanic.isdigit() else None

    services: list[ServiceLine] = []
    for row in _indexed_fields(form, 'service_').values():
        description = row.get('description', '')
        if not description and not row.get('unit_price'):
            continue
        if not description:
            raise ValueError('A descrição do serviço é obrigatória.')
        services.append(
            ServiceLine(
                description=description,
                quantity=_parse_positive_int(row.get('quantity', '1') or '1', 'A quantidade'),
                unit_price=_parse_money(row.get('unit_price', '0') or '0', 'O preço'),
            )
        )

    parts: list[PartLine] = []
    for row in _indexed_fields(form, 'part_').values():
        raw_item = row.get('item_id', '')
        if not raw_item.isdigit():
            continue
        has_snapshot = bool(row.get('code')) and bool(row.get('name')) and bool(row.get('sale_price'))
        part = PartLine(
            item_id=int(raw_item),
            quantity=_parse_positive_int(row.get('quantity', '1') or '1', 'A quantidade da peça'),
            code=row.get('code') if has_snapshot else None,
            name=row.get('name') if has_snapshot else None,
            sale_price=_parse_money(row['sale_price'], 'O preço da peça') if has_snapshot else None,
        )
        parts = merge_parts(parts, [part])

    raw_total = str(form.get('total', '')).strip()
    total = _parse_money(raw_total, 'O total') if raw_total else None

    return OrderInput(
        customer=customer,
        customer_document_type=doc_type,
        customer_document=document or None,
        customer_phone=str(form.get('customer_phone', '')).strip() or None,
        vehicle_make=make,
        vehicle_model=model,
        vehicle_year=year,
        vehicle_plate=plate,
        vehicle_color=color,
        mechanic_id=mechanic_id,
        start_date=start_date,
        status=status,
        symptoms=str(form.get('symptoms', '')).strip() or None,
        diagnosis=str(form.get('diagnosis', '')).strip() or None,
        services=services,
        parts=parts,
        total=total,
    )


def compute_total(services: list[ServiceLine], parts: list[PartLine]) -> Decimal:
    total = sum((line.amount for line in services), Decimal('0')) + sum((part.amount for part in parts), Decimal('0'))
    return total.quantize(CENT)


def list_orders(
    db: Session,
    *,
    ctx: WorkshopContext,
    search: str | None = None,
    status: OrderStatus | None = None,
) -> list[ServiceOrder]:
    query = select(ServiceOrder).where(ServiceOrder.workshop_id == ctx.workshop_id)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(
            or_(
                ServiceOrder.customer.ilike(pattern),
                ServiceOrder.vehicle_plate.ilike(pattern),
                ServiceOrder.display_id == term.zfill(4),
            )
        )
    if status is not None:
        query = query.where(ServiceOrder.status == status)
    query = query.order_by(ServiceOrder.start_date.desc(), ServiceOrder.id.desc())
    return list(db.execute(query).scalars().all())


def get_order(db: Session, *, ctx: WorkshopContext, order_id: int) -> ServiceOrder:
    order = db.execute(
        select(ServiceOrder).where(ServiceOrder.id == order_id, ServiceOrder.workshop_id == ctx.workshop_id)
    ).scalar_one_or_none()
    if not order:
        raise LookupError('Ordem de serviço não encontrada')
    return order


def find_by_display_id(db: Session, *, ctx: WorkshopContext, raw: str) -> ServiceOrder:
    digits = _digits(raw)
    if not digits:
        raise ValueError('Por favor, insira o número da OS.')
    order = db.execute(
        select(ServiceOrder).where(
            ServiceOrder.workshop_id == ctx.workshop_id,
            ServiceOrder.display_id == digits.zfill(4),
        )
    ).scalar_one_or_none()
    if not order:
        raise LookupError(f'Nenhuma Ordem de Serviço encontrada com o número #{digits}.')
    return order


def get_order_lines(db: Session, *, order_id: int) -> tuple[list[ServiceLine], list[PartLine]]:
    services = [
        ServiceLine(description=row.description, quantity=row.quantity, unit_price=row.unit_price)
        for row in db.execute(
            select(ServiceOrderService.description, ServiceOrderService.quantity, ServiceOrderService.unit_price)
            .where(ServiceOrderService.order_id == order_id)
            .order_by(ServiceOrderService.position.asc())
        ).all()
    ]
    parts = [
        PartLine(item_id=row.item_id, quantity=row.quantity, code=row.code, name=row.name, sale_price=row.sale_price)
        for row in db.execute(
            select(
                ServiceOrderPart.item_id,
                ServiceOrderPart.code,
                ServiceOrderPart.name,
                ServiceOrderPart.quantity,
                ServiceOrderPart.sale_price,
            )
            .where(ServiceOrderPart.order_id == order_id)
            .order_by(ServiceOrderPart.position.asc())
        ).all()
    ]
    return services, parts


def _next_display_id(db: Session, *, ctx: WorkshopContext) -> str:
    result = db.execute(
        update(Workshop)
        .where(Workshop.id == ctx.workshop_id)
        .values(last_order_number=Workshop.last_order_number + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LookupError('Oficina não encontrada')
    number = db.execute(select(Workshop.last_order_number).where(Workshop.id == ctx.workshop_id)).scalar_one()
    return str(number).zfill(4)


def _resolve_part_snapshots(db: Session, *, ctx: WorkshopContext, parts: list[PartLine]) -> list[PartLine]:
    missing = [part.item_id for part in parts if not part.has_snapshot]
    items = inventory_service.get_items_by_id(db, ctx=ctx, item_ids=missing)
    resolved: list[PartLine] = []
    for part in parts:
        if part.has_snapshot:
            resolved.append(part)
            continue
        item = items.get(part.item_id)
        if not item:
            raise ValueError(f'Peça {part.item_id} não encontrada no estoque.')
        resolved.append(replace(part, code=item.code, name=item.name, sale_price=item.sale_price))
    return resolved


def _write_lines(db: Session, *, order_id: int, services: list[ServiceLine], parts: list[PartLine]) -> None:
    db.execute(delete(ServiceOrderService).where(ServiceOrderService.order_id == order_id))
    db.execute(delete(ServiceOrderPart).where(ServiceOrderPart.order_id == order_id))
    db.add_all(
        [
            ServiceOrderService(
                order_id=order_id,
                position=position,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for position, line in enumerate(services, start=1)
        ]
    )
    db.add_all(
        [
            ServiceOrderPart(
                order_id=order_id,
                position=position,
                item_id=part.item_id,
                code=part.code,
                name=part.name,
                quantity=part.quantity,
                sale_price=part.sale_price,
            )
            for position, part in enumerate(parts, start=1)
        ]
    )


def _required_by_item(parts: list[PartLine]) -> dict[int, tuple[str, int]]:
    required: dict[int, tuple[str, int]] = {}
    for part in parts:
        name, qty = required.get(part.item_id, (part.name or str(part.item_id), 0))
        required[part.item_id] = (name, qty + part.quantity)
    return required


def apply_completion_stock(
    db: Session,
    *,
    ctx: WorkshopContext,
    parts: list[PartLine],
) -> tuple[bool, list[StockShortage]]:
    """Decrement every part's stock item as one batch, or none of them.

    The check runs against a quantity snapshot; each decrement is then a
    conditional UPDATE, so a completion racing another one can never push an
    item below zero. If a decrement loses such a race the decrements already
    applied in this batch are put back and the item is reported short.
    """
    required = _required_by_item(parts)
    if not required:
        return True, []

    items = inventory_service.get_items_by_id(db, ctx=ctx, item_ids=list(required))
    shortages: list[StockShortage] = []
    for item_id, (part_name, qty) in required.items():
        item = items.get(item_id)
        available = item.quantity if item else 0
        if available < qty:
            shortages.append(
                StockShortage(item_id=item_id, name=item.name if item else part_name, required=qty, available=available)
            )
    if shortages:
        return False, shortages

    applied: list[tuple[int, int]] = []
    for item_id, (part_name, qty) in required.items():
        if inventory_service.try_decrement(db, ctx=ctx, item_id=item_id, quantity=qty):
            applied.append((item_id, qty))
            continue
        for done_id, done_qty in applied:
            inventory_service.increment(db, ctx=ctx, item_id=done_id, quantity=done_qty)
        try:
            available = inventory_service.current_quantity(db, ctx=ctx, item_id=item_id)
        except LookupError:
            available = 0
        for item in items.values():
            db.expire(item)
        logger.warning(
            'stock changed during order completion',
            extra={'workshop_id': ctx.workshop_id, 'item_id': item_id, 'required': qty, 'available': available},
        )
        return False, [StockShortage(item_id=item_id, name=items[item_id].name, required=qty, available=available)]

    for item in items.values():
        db.expire(item)
    return True, []


def save_order(
    db: Session,
    *,
    ctx: WorkshopContext,
    data: OrderInput,
    order_id: int | None = None,
) -> SaveOrderResult:
    if data.status == OrderStatus.FINALIZADO:
        raise ValueError('O status FINALIZADO é definido apenas pelo registro do pagamento.')

    previous_status: OrderStatus | None = None
    if order_id is not None:
        order = get_order(db, ctx=ctx, order_id=order_id)
        if order.status == OrderStatus.FINALIZADO:
            raise ValueError('Ordem de serviço finalizada e paga. A edição não é permitida.')
        previous_status = order.status
        created = False
    else:
        order = ServiceOrder(workshop_id=ctx.workshop_id, display_id=_next_display_id(db, ctx=ctx))
        created = True

    mechanic_name = None
    if data.mechanic_id is not None:
        mechanic_name = get_mechanic(db, ctx=ctx, mechanic_id=data.mechanic_id).name

    parts = _resolve_part_snapshots(db, ctx=ctx, parts=data.parts)
    total = data.total if data.total is not None else compute_total(data.services, parts)

    order.customer = data.customer
    order.customer_document_type = data.customer_document_type
    order.customer_document = data.customer_document
    order.customer_phone = data.customer_phone
    order.vehicle_make = data.vehicle_make
    order.vehicle_model = data.vehicle_model
    order.vehicle_year = data.vehicle_year
    order.vehicle_plate = data.vehicle_plate
    order.vehicle_color = data.vehicle_color
    order.mechanic_id = data.mechanic_id
    order.mechanic_name = mechanic_name
    order.start_date = data.start_date
    order.status = data.status
    order.symptoms = data.symptoms
    order.diagnosis = data.diagnosis
    order.total = total
    order.updated_at = _now()
    if created:
        db.add(order)
    db.flush()
    _write_lines(db, order_id=order.id, services=data.services, parts=parts)

    stock_applied = False
    shortages: list[StockShortage] = []
    if previous_status != OrderStatus.CONCLUIDO and data.status == OrderStatus.CONCLUIDO:
        stock_applied, shortages = apply_completion_stock(db, ctx=ctx, parts=parts)
        if shortages:
            logger.warning(
                'order completed without stock decrement',
                extra={
                    'workshop_id': ctx.workshop_id,
                    'order_id': order.id,
                    'shortages': [shortage.item_id for shortage in shortages],
                },
            )
        else:
            logger.info(
                'order completed',
                extra={'workshop_id': ctx.workshop_id, 'order_id': order.id, 'parts': len(parts)},
            )

    db.flush()
    return SaveOrderResult(order=order, created=created, stock_applied=stock_applied, shortages=shortages)


def delete_order(db: Session, *, ctx: WorkshopContext, order_id: int) -> ServiceOrder:
    order = get_order(db, ctx=ctx, order_id=order_id)
    if order.status == OrderStatus.FINALIZADO:
        raise ValueError('Ordens de serviço finalizadas não podem ser excluídas.')
    db.execute(delete(ServiceOrderService).where(ServiceOrderService.order_id == order.id))
    db.execute(delete(ServiceOrderPart).where(ServiceOrderPart.order_id == order.id))
    db.delete(order)
    db.flush()
    return order


def clamp_discount_percent(requested, maximum: int | None = None) -> tuple[Decimal, bool]:
    """Return the usable percent and whether the requested one exceeded the maximum."""
    limit = Decimal(settings.max_discount_percent if maximum is None else maximum)
    try:
        percent = Decimal(str(requested).strip().replace(',', '.')) if str(requested).strip() else Decimal('0')
    except InvalidOperation as exc:
        raise ValueError('Desconto inválido.') from exc
    if not percent.is_finite():
        raise ValueError('Desconto inválido.')
    if percent > limit:
        return limit, True
    if percent < 0:
        return Decimal('0'), False
    return percent, False


def record_payment(
    db: Session,
    *,
    ctx: WorkshopContext,
    order_id: int,
    payment_method: str,
    discount_percent,
) -> PaymentResult:
    method = (payment_method or '').strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValueError('Forma de pagamento inválida.')

    order = get_order(db, ctx=ctx, order_id=order_id)
    percent, clamped = clamp_discount_percent(discount_percent)
    warnings: list[str] = []
    if clamped:
        warnings.append(f'O desconto máximo permitido é de {settings.max_discount_percent}%.')

    original_total = Decimal(order.total)
    discount_value = (original_total * percent / Decimal('100')).quantize(CENT, rounding=ROUND_HALF_UP)
    final_total = original_total - discount_value
    if final_total <= 0:
        raise ValueError('A ordem de serviço não possui valor a receber.')

    transaction = record_income(
        db,
        ctx=ctx,
        description=f'PAGAMENTO OS #{order.display_id}',
        value=final_total,
        reference_id=order.id,
        reference_type=ReferenceType.OS,
    )
    order.status = OrderStatus.FINALIZADO
    order.payment_method = method
    order.subtotal = original_total
    order.total = final_total
    order.discount = discount_value if discount_value > 0 else None
    order.updated_at = _now()
    db.flush()
    logger.info(
        'payment recorded',
        extra={
            'workshop_id': ctx.workshop_id,
            'order_id': order.id,
            'transaction_id': transaction.id,
            'final_total': final_total,
            'discount_percent': percent,
        },
    )
    return PaymentResult(
        order=order,
        transaction=transaction,
        discount_percent=percent,
        discount_value=discount_value,
        final_total=final_total,
        warnings=warnings,
    )


def build_receipt(db: Session, *, ctx: WorkshopContext, order_id: int) -> dict:
    order = get_order(db, ctx=ctx, order_id=order_id)
    workshop = db.execute(select(Workshop).where(Workshop.id == ctx.workshop_id)).scalar_one()
    services, parts = get_order_lines(db, order_id=order.id)
    services_total = sum((line.amount for line in services), Decimal('0'))
    parts_total = sum((part.amount for part in parts), Decimal('0'))
    return {
        'workshop': {
            'name': workshop.name,
            'cnpj': workshop.cnpj,
            'address': workshop.address,
            'phone': workshop.phone,
            'email': workshop.email,
        },
        'order': order,
        'services': services,
        'parts': parts,
        'services_total': services_total.quantize(CENT),
        'parts_total': parts_total.quantize(CENT),
        'subtotal': order.subtotal if order.subtotal is not None else order.total,
        'discount': order.discount or Decimal('0.00'),
        'total': order.total,
        'payment_method': order.payment_method,
        'is_paid': order.status == OrderStatus.FINALIZADO,
    }


def describe_services(services: list[ServiceLine]) -> str:
    return ', '.join(f'{line.quantity}X {line.description}' for line in services)


def describe_parts(parts: list[PartLine]) -> str:
    return ', '.join(f'{part.quantity}X {part.name}' for part in parts)


def vehicle_history_text(
    db: Session,
    *,
    ctx: WorkshopContext,
    plate: str,
    exclude_order_id: int | None = None,
) -> str:
    clean_plate = (plate or '').strip().upper().replace('-', '')
    if not clean_plate:
        return ''
    query = (
        select(ServiceOrder)
        .where(ServiceOrder.workshop_id == ctx.workshop_id, ServiceOrder.vehicle_plate == clean_plate)
        .order_by(ServiceOrder.start_date.asc(), ServiceOrder.id.asc())
    )
    if exclude_order_id is not None:
        query = query.where(ServiceOrder.id != exclude_order_id)

    entries: list[str] = []
    for order in db.execute(query).scalars().all():
        services, parts = get_order_lines(db, order_id=order.id)
        pieces = [f'{order.start_date.isoformat()} OS #{order.display_id} ({order.status.value})']
        if order.symptoms:
            pieces.append(f'SINTOMAS: {order.symptoms}')
        if services:
            pieces.append(f'SERVIÇOS: {describe_services(services)}')
        if parts:
            pieces.append(f'PEÇAS: {describe_parts(parts)}')
        if order.diagnosis:
            pieces.append(f'DIAGNÓSTICO: {order.diagnosis}')
        entries.append('; '.join(pieces))
    return '\n'.join(entries)
