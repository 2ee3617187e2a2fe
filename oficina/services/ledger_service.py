from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import FinancialTransaction, ReferenceType, TransactionType

logger = logging.getLogger(__name__)

ORDER_PAYMENT_CATEGORY = 'ORDEM DE SERVIÇO'


@dataclass(frozen=True)
class TransactionInput:
    description: str
    category: str
    type: TransactionType
    value: Decimal
    date: datetime


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def at_midday(day: date) -> datetime:
    # Midday keeps a calendar date inside the same month whatever the viewer's offset.
    return datetime.combine(day, time(12, 0), tzinfo=timezone.utc)


def parse_transaction_input(form: dict) -> TransactionInput:
    description = str(form.get('description', '')).strip()
    category = str(form.get('category', '')).strip()
    if not description:
        raise ValueError('A descrição é obrigatória.')
    if not category:
        raise ValueError('A categoria é obrigatória.')

    raw_type = str(form.get('type', '')).strip().upper()
    try:
        tx_type = TransactionType(raw_type)
    except ValueError as exc:
        raise ValueError('Selecione o tipo.') from exc

    try:
        value = Decimal(str(form.get('value', '')).strip().replace(',', '.'))
    except InvalidOperation as exc:
        raise ValueError('Valor inválido.') from exc
    if not value.is_finite():
        raise ValueError('Valor inválido.')
    if value <= 0:
        raise ValueError('O valor deve ser positivo.')

    raw_date = str(form.get('date', '')).strip()
    if not raw_date:
        raise ValueError('A data é obrigatória.')
    try:
        day = date.fromisoformat(raw_date)
    except ValueError as exc:
        raise ValueError('Data inválida.') from exc

    return TransactionInput(
        description=description,
        category=category,
        type=tx_type,
        value=value.quantize(Decimal('0.01')),
        date=at_midday(day),
    )


def list_transactions(
    db: Session,
    *,
    ctx: WorkshopContext,
    search: str | None = None,
    tx_type: TransactionType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[FinancialTransaction]:
    query = select(FinancialTransaction).where(FinancialTransaction.workshop_id == ctx.workshop_id)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(
            or_(
                FinancialTransaction.description.ilike(pattern),
                FinancialTransaction.category.ilike(pattern),
            )
        )
    if tx_type is not None:
        query = query.where(FinancialTransaction.type == tx_type)
    if date_from is not None:
        # A lone start date selects that single day.
        end_day = date_to or date_from
        query = query.where(
            FinancialTransaction.date >= datetime.combine(date_from, time.min, tzinfo=timezone.utc),
            FinancialTransaction.date <= datetime.combine(end_day, time.max, tzinfo=timezone.utc),
        )
    query = query.order_by(FinancialTransaction.date.desc(), FinancialTransaction.id.desc())
    return list(db.execute(query).scalars().all())


def list_all_transactions(db: Session, *, ctx: WorkshopContext) -> list[FinancialTransaction]:
    return list(
        db.execute(
            select(FinancialTransaction).where(FinancialTransaction.workshop_id == ctx.workshop_id)
        ).scalars().all()
    )


def get_transaction(db: Session, *, ctx: WorkshopContext, transaction_id: int) -> FinancialTransaction:
    row = db.execute(
        select(FinancialTransaction).where(
            FinancialTransaction.id == transaction_id,
            FinancialTransaction.workshop_id == ctx.workshop_id,
        )
    ).scalar_one_or_none()
    if not row:
        raise LookupError('Lançamento não encontrado')
    return row


def create_transaction(db: Session, *, ctx: WorkshopContext, data: TransactionInput) -> FinancialTransaction:
    row = FinancialTransaction(
        workshop_id=ctx.workshop_id,
        description=data.description,
        category=data.category,
        type=data.type,
        value=data.value,
        date=data.date,
        reference_type=ReferenceType.MANUAL,
        created_by_user_id=ctx.actor_id,
    )
    db.add(row)
    db.flush()
    return row


def update_transaction(
    db: Session,
    *,
    ctx: WorkshopContext,
    transaction_id: int,
    data: TransactionInput,
) -> FinancialTransaction:
    row = get_transaction(db, ctx=ctx, transaction_id=transaction_id)
    row.description = data.description
    row.category = data.category
    row.type = data.type
    row.value = data.value
    row.date = data.date
    db.flush()
    return row


def delete_transaction(db: Session, *, ctx: WorkshopContext, transaction_id: int) -> FinancialTransaction:
    row = get_transaction(db, ctx=ctx, transaction_id=transaction_id)
    if row.reference_type != ReferenceType.MANUAL:
        raise PermissionError(
            'Lançamentos automáticos (gerados por OS ou Estoque) não podem ser excluídos.'
        )
    db.delete(row)
    db.flush()
    return row


def record_income(
    db: Session,
    *,
    ctx: WorkshopContext,
    description: str,
    value: Decimal,
    reference_id: int,
    reference_type: ReferenceType,
    category: str = ORDER_PAYMENT_CATEGORY,
    when: datetime | None = None,
) -> FinancialTransaction:
    if value <= 0:
        raise ValueError('O valor deve ser positivo.')
    row = FinancialTransaction(
        workshop_id=ctx.workshop_id,
        description=description,
        category=category,
        type=TransactionType.IN,
        value=value,
        date=when or _now(),
        reference_id=reference_id,
        reference_type=reference_type,
        created_by_user_id=ctx.actor_id,
    )
    db.add(row)
    db.flush()
    logger.info(
        'income recorded',
        extra={'workshop_id': ctx.workshop_id, 'reference_type': reference_type.value, 'reference_id': reference_id, 'value': value},
    )
    return row
