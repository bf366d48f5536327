from datetime import datetime
from models.db import db

# association table for many-to-many User <-> Role
user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)

SUPPORTED_LANGUAGES = ("fr", "ar", "en")

CUSTOMER = "CUSTOMER"
ADMIN = "ADMIN"
SUPER_ADMIN = "SUPER_ADMIN"
ADMIN_ROLES = (ADMIN, SUPER_ADMIN)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(120), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)
    preferred_language = db.Column(db.String(5), nullable=False, default="fr")
    # delivery channels for booking and payment notifications
    email_notifications = db.Column(db.Boolean, nullable=False, default=True)
    sms_notifications = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, back_populates="users")
    cars = db.relationship("Car", back_populates="owner")

    @property
    def role_names(self):
        return {r.name for r in self.roles}

    def is_admin(self) -> bool:
        return not self.role_names.isdisjoint(ADMIN_ROLES)


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # see CUSTOMER, ADMIN, SUPER_ADMIN above

    users = db.relationship("User", secondary=user_roles, back_populates="roles")
