from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
BigIntId = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


class UserRole(str, Enum):
    ADMIN = 'ADMIN'
    OFICINA = 'OFICINA'


class OrderStatus(str, Enum):
    PENDENTE = 'PENDENTE'
    EM_ANDAMENTO = 'EM ANDAMENTO'
    CONCLUIDO = 'CONCLUÍDO'
    FINALIZADO = 'FINALIZADO'


class DocumentType(str, Enum):
    CPF = 'CPF'
    CNPJ = 'CNPJ'


class TransactionType(str, Enum):
    IN = 'IN'
    OUT = 'OUT'


class ReferenceType(str, Enum):
    OS = 'OS'
    STOCK = 'STOCK'
    MANUAL = 'MANUAL'


class Workshop(Base):
    __tablename__ = 'workshops'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    cnpj: Mapped[str | None] = mapped_column(String(18))
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(32))
    email: Mapped[str | None] = mapped_column(Text)
    last_order_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserProfile(Base):
    __tablename__ = 'user_profiles'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'), nullable=False)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('user_profiles.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(String(150), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('user_profiles.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'))
    actor_user_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('user_profiles.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[int | None] = mapped_column(BigIntId)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockItem(Base):
    __tablename__ = 'stock_items'
    __table_args__ = (
        UniqueConstraint('workshop_id', 'code', name='stock_items_workshop_code_key'),
        CheckConstraint('quantity >= 0', name='stock_items_quantity_non_negative_ck'),
        CheckConstraint('min_quantity >= 0', name='stock_items_min_quantity_non_negative_ck'),
        CheckConstraint('cost_price >= 0 AND sale_price >= 0', name='stock_items_prices_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    sale_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Mechanic(Base):
    __tablename__ = 'mechanics'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    specialty: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ServiceOrder(Base):
    __tablename__ = 'service_orders'
    __table_args__ = (
        UniqueConstraint('workshop_id', 'display_id', name='service_orders_workshop_display_id_key'),
        CheckConstraint('total >= 0', name='service_orders_total_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'), nullable=False)
    display_id: Mapped[str] = mapped_column(String(16), nullable=False)
    customer: Mapped[str] = mapped_column(Text, nullable=False)
    customer_document_type: Mapped[DocumentType] = mapped_column(
        _enum(DocumentType, 'document_type'), nullable=False, default=DocumentType.CPF
    )
    customer_document: Mapped[str | None] = mapped_column(String(32))
    customer_phone: Mapped[str | None] = mapped_column(String(32))
    vehicle_make: Mapped[str] = mapped_column(Text, nullable=False)
    vehicle_model: Mapped[str] = mapped_column(Text, nullable=False)
    vehicle_year: Mapped[int] = mapped_column(Integer, nullable=False)
    vehicle_plate: Mapped[str] = mapped_column(String(7), nullable=False)
    vehicle_color: Mapped[str] = mapped_column(Text, nullable=False)
    mechanic_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('mechanics.id', ondelete='SET NULL'))
    mechanic_name: Mapped[str | None] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'), nullable=False, default=OrderStatus.PENDENTE
    )
    symptoms: Mapped[str | None] = mapped_column(Text)
    diagnosis: Mapped[str | None] = mapped_column(Text)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    subtotal: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    discount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    payment_method: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ServiceOrderService(Base):
    __tablename__ = 'service_order_services'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='service_order_services_quantity_ck'),
    )

    order_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('service_orders.id', ondelete='CASCADE'), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))


class ServiceOrderPart(Base):
    __tablename__ = 'service_order_parts'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='service_order_parts_quantity_ck'),
    )

    order_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('service_orders.id', ondelete='CASCADE'), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Snapshot of the stock item at the time it was added; not a foreign key.
    item_id: Mapped[int] = mapped_column(BigIntId, nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    sale_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class FinancialTransaction(Base):
    __tablename__ = 'financial_transactions'
    __table_args__ = (
        CheckConstraint('value > 0', name='financial_transactions_value_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    workshop_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('workshops.id', ondelete='CASCADE'), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[TransactionType] = mapped_column(_enum(TransactionType, 'transaction_type'), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reference_id: Mapped[int | None] = mapped_column(BigIntId)
    reference_type: Mapped[ReferenceType] = mapped_column(
        _enum(ReferenceType, 'reference_type'), nullable=False, default=ReferenceType.MANUAL
    )
    created_by_user_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('user_profiles.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
