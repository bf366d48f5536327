from datetime import datetime
from models.db import db


class AuthSession(db.Model):
    __tablename__ = "auth_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # sha256 of the cookie token; the raw token never hits the database
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked_at = db.Column(db.DateTime, nullable=True)

    def is_live(self, now: datetime, idle_seconds: int) -> bool:
        if self.revoked_at is not None or self.expires_at <= now:
            return False
        last_seen = self.last_seen_at or self.created_at
        return (now - last_seen).total_seconds() < idle_seconds
