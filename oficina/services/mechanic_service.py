from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import Mechanic, ServiceOrder


@dataclass(frozen=True)
class MechanicInput:
    name: str
    specialty: str
    email: str | None = None


def parse_mechanic_input(form: dict) -> MechanicInput:
    name = str(form.get('name', '')).strip()
    specialty = str(form.get('specialty', '')).strip()
    email = str(form.get('email', '')).strip() or None
    if not name:
        raise ValueError('O nome é obrigatório.')
    if not specialty:
        raise ValueError('A especialidade é obrigatória.')
    if email and '@' not in email:
        raise ValueError('O e-mail é inválido.')
    return MechanicInput(name=name, specialty=specialty, email=email)


def list_mechanics(db: Session, *, ctx: WorkshopContext) -> list[Mechanic]:
    return list(
        db.execute(
            select(Mechanic).where(Mechanic.workshop_id == ctx.workshop_id).order_by(Mechanic.name.asc())
        ).scalars().all()
    )


def get_mechanic(db: Session, *, ctx: WorkshopContext, mechanic_id: int) -> Mechanic:
    mechanic = db.execute(
        select(Mechanic).where(Mechanic.id == mechanic_id, Mechanic.workshop_id == ctx.workshop_id)
    ).scalar_one_or_none()
    if not mechanic:
        raise LookupError('Mecânico não encontrado')
    return mechanic


def create_mechanic(db: Session, *, ctx: WorkshopContext, data: MechanicInput) -> Mechanic:
    mechanic = Mechanic(workshop_id=ctx.workshop_id, name=data.name, specialty=data.specialty, email=data.email)
    db.add(mechanic)
    db.flush()
    return mechanic


def update_mechanic(db: Session, *, ctx: WorkshopContext, mechanic_id: int, data: MechanicInput) -> Mechanic:
    mechanic = get_mechanic(db, ctx=ctx, mechanic_id=mechanic_id)
    mechanic.name = data.name
    mechanic.specialty = data.specialty
    mechanic.email = data.email
    db.flush()
    return mechanic


def delete_mechanic(db: Session, *, ctx: WorkshopContext, mechanic_id: int) -> Mechanic:
    mechanic = get_mechanic(db, ctx=ctx, mechanic_id=mechanic_id)
    # Orders keep the mechanic_name snapshot.
    db.execute(
        update(ServiceOrder)
        .where(ServiceOrder.workshop_id == ctx.workshop_id, ServiceOrder.mechanic_id == mechanic.id)
        .values(mechanic_id=None)
        .execution_options(synchronize_session=False)
    )
    db.delete(mechanic)
    db.flush()
    return mechanic
