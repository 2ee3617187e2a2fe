from decimal import Decimal

from sqlalchemy import select

from oficina.db import SessionLocal, init_db
from oficina.models import Mechanic, StockItem, UserProfile, UserRole, Workshop
from oficina.security.passwords import hash_password

DEMO_ITEMS = [
    ('OLEO-5W30', 'Óleo 5W30 Sintético 1L', 'ÓLEOS E FLUIDOS', 40, 10, Decimal('28.00'), Decimal('45.00')),
    ('FILT-OL-01', 'Filtro de Óleo', 'FILTROS', 15, 5, Decimal('18.50'), Decimal('35.00')),
    ('PAST-FR-D', 'Pastilha de Freio Dianteira', 'FREIOS', 6, 4, Decimal('75.00'), Decimal('140.00')),
    ('VELA-IR-04', 'Vela de Ignição Iridium', 'IGNIÇÃO', 3, 8, Decimal('32.00'), Decimal('60.00')),
]

DEMO_MECHANICS = [
    ('Carlos Silva', 'Motor', 'carlos@oficina-demo.com.br'),
    ('Ana Souza', 'Suspensão e Freios', None),
]


def seed() -> None:
    init_db()
    with SessionLocal() as db:
        workshop = db.execute(select(Workshop).where(Workshop.name == 'Oficina Demo')).scalar_one_or_none()
        if not workshop:
            workshop = Workshop(name='Oficina Demo', cnpj='12.345.678/0001-90', phone='(11) 4000-0000')
            db.add(workshop)
            db.flush()

        admin = db.execute(select(UserProfile).where(UserProfile.username == 'admin')).scalar_one_or_none()
        if not admin:
            db.add(
                UserProfile(
                    workshop_id=workshop.id,
                    username='admin',
                    display_name='Administrador',
                    password_hash=hash_password('adminpass'),
                    role=UserRole.ADMIN,
                    active=True,
                )
            )

        staff = db.execute(select(UserProfile).where(UserProfile.username == 'oficina1')).scalar_one_or_none()
        if not staff:
            db.add(
                UserProfile(
                    workshop_id=workshop.id,
                    username='oficina1',
                    display_name='Balcão',
                    password_hash=hash_password('oficinapass'),
                    role=UserRole.OFICINA,
                    active=True,
                )
            )

        for code, name, category, quantity, min_quantity, cost, sale in DEMO_ITEMS:
            exists = db.execute(
                select(StockItem.id).where(StockItem.workshop_id == workshop.id, StockItem.code == code)
            ).first()
            if not exists:
                db.add(
                    StockItem(
                        workshop_id=workshop.id,
                        code=code,
                        name=name,
                        category=category,
                        quantity=quantity,
                        min_quantity=min_quantity,
                        cost_price=cost,
                        sale_price=sale,
                    )
                )

        if not db.execute(select(Mechanic.id).where(Mechanic.workshop_id == workshop.id)).first():
            for name, specialty, email in DEMO_MECHANICS:
                db.add(Mechanic(workshop_id=workshop.id, name=name, specialty=specialty, email=email))

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
