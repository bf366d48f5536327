from models import db
from models.user import Role, CUSTOMER, ADMIN, SUPER_ADMIN
from models.center import InspectionCenter

DEFAULT_ROLES = [CUSTOMER, ADMIN, SUPER_ADMIN]

DEFAULT_CENTERS = [
    {"name": "Centre Casablanca Ain Sebaa", "city": "Casablanca", "address": "Route de Rabat, Ain Sebaa", "phone": "+212522000001"},
    {"name": "Centre Rabat Agdal", "city": "Rabat", "address": "Avenue de France, Agdal", "phone": "+212537000002"},
    {"name": "Centre Marrakech Gueliz", "city": "Marrakech", "address": "Boulevard Mohammed V, Gueliz", "phone": "+212524000003"},
    {"name": "Centre Fes Saiss", "city": "Fes", "address": "Route d'Imouzzer, Saiss", "phone": "+212535000004"},
    {"name": "Centre Tanger Moghogha", "city": "Tanger", "address": "Zone industrielle Moghogha", "phone": "+212539000005"},
]


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()


def seed_centers() -> int:
    existing = {c.name for c in InspectionCenter.query.all()}
    created = 0
    for row in DEFAULT_CENTERS:
        if row["name"] in existing:
            continue
        db.session.add(InspectionCenter(**row))
        created += 1
    db.session.commit()
    return created
