from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import UserProfile, UserRole, Workshop
from oficina.security.passwords import hash_password, validate_new_password

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r'^[a-z0-9_.@-]{3,150}$')


@dataclass(frozen=True)
class WorkshopInfo:
    name: str
    cnpj: str | None
    address: str | None
    phone: str | None
    email: str | None


@dataclass(frozen=True)
class SignupInput:
    workshop_name: str
    username: str
    display_name: str
    password: str


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _optional(form: dict, key: str) -> str | None:
    return str(form.get(key, '')).strip() or None


def parse_workshop_info(form: dict) -> WorkshopInfo:
    name = str(form.get('name', '')).strip()
    if not name:
        raise ValueError('O nome da oficina é obrigatório.')
    cnpj = _optional(form, 'cnpj')
    if cnpj is not None and len(re.sub(r'\D', '', cnpj)) != 14:
        raise ValueError('CNPJ deve ter 14 dígitos.')
    return WorkshopInfo(
        name=name,
        cnpj=cnpj,
        address=_optional(form, 'address'),
        phone=_optional(form, 'phone'),
        email=_optional(form, 'email'),
    )


def parse_signup_input(form: dict) -> SignupInput:
    workshop_name = str(form.get('workshop_name', '')).strip()
    username = str(form.get('username', '')).strip().lower()
    password = str(form.get('password', ''))
    if not workshop_name:
        raise ValueError('O nome da oficina é obrigatório.')
    if not USERNAME_RE.match(username):
        raise ValueError('Usuário inválido.')
    validate_new_password(password, str(form.get('password_confirm', '')))
    return SignupInput(
        workshop_name=workshop_name,
        username=username,
        display_name=str(form.get('display_name', '')).strip() or username,
        password=password,
    )


def signup(db: Session, *, data: SignupInput) -> tuple[Workshop, UserProfile]:
    """Create a workshop together with its first ADMIN user."""
    taken = db.execute(select(UserProfile.id).where(UserProfile.username == data.username)).first()
    if taken:
        raise ValueError('Este usuário já está em uso.')
    now = _now()
    workshop = Workshop(name=data.workshop_name, created_at=now, updated_at=now)
    db.add(workshop)
    db.flush()
    user = UserProfile(
        workshop_id=workshop.id,
        username=data.username,
        display_name=data.display_name,
        password_hash=hash_password(data.password),
        role=UserRole.ADMIN,
        active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    logger.info('workshop created', extra={'workshop_id': workshop.id, 'user_id': user.id})
    return workshop, user


def get_workshop(db: Session, *, ctx: WorkshopContext) -> Workshop:
    workshop = db.execute(select(Workshop).where(Workshop.id == ctx.workshop_id)).scalar_one_or_none()
    if not workshop:
        raise LookupError('Oficina não encontrada')
    return workshop


def update_workshop(db: Session, *, ctx: WorkshopContext, data: WorkshopInfo) -> Workshop:
    if not ctx.is_admin:
        raise PermissionError('Somente administradores podem alterar os dados da oficina.')
    workshop = get_workshop(db, ctx=ctx)
    workshop.name = data.name
    workshop.cnpj = data.cnpj
    workshop.address = data.address
    workshop.phone = data.phone
    workshop.email = data.email
    workshop.updated_at = _now()
    db.flush()
    return workshop


def list_users(db: Session, *, ctx: WorkshopContext) -> list[UserProfile]:
    return list(
        db.execute(
            select(UserProfile).where(UserProfile.workshop_id == ctx.workshop_id).order_by(UserProfile.username.asc())
        ).scalars().all()
    )


def create_user(
    db: Session,
    *,
    ctx: WorkshopContext,
    username: str,
    password: str,
    role: UserRole | str = UserRole.OFICINA,
    display_name: str | None = None,
) -> UserProfile:
    if not ctx.is_admin:
        raise PermissionError('Somente administradores podem criar usuários.')
    username = (username or '').strip().lower()
    if not USERNAME_RE.match(username):
        raise ValueError('Usuário inválido.')
    validate_new_password(password)
    if db.execute(select(UserProfile.id).where(UserProfile.username == username)).first():
        raise ValueError('Este usuário já está em uso.')
    user = UserProfile(
        workshop_id=ctx.workshop_id,
        username=username,
        display_name=(display_name or '').strip() or username,
        password_hash=hash_password(password),
        role=UserRole(role),
        active=True,
    )
    db.add(user)
    db.flush()
    return user
