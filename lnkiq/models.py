import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin

from lnkiq.extensions import db, login_manager


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(320), unique=True, nullable=True, index=True)
    email_verified = db.Column(db.DateTime(timezone=True), nullable=True)
    image = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    oauth_accounts = db.relationship("OAuthAccount", backref="user", lazy=True)
    sessions = db.relationship("UserSession", backref="user", lazy=True)
    devices = db.relationship("AnonymousDevice", backref="user", lazy=True)

    def profile_dict(self):
        return {"id": self.id, "name": self.name, "email": self.email}

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "image": self.image,
        }


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class OAuthAccount(db.Model):
    __tablename__ = "oauth_accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider = db.Column(db.String(64), nullable=False)
    provider_account_id = db.Column(db.String(255), nullable=False)
    access_token = db.Column(db.Text, nullable=True)
    refresh_token = db.Column(db.Text, nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "provider", "provider_account_id", name="uq_oauth_provider_account"
        ),
    )


class UserSession(db.Model):
    __tablename__ = "user_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def issue_token(prefix="lq"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        return token, UserSession.hash_token(token)


class AnonymousDevice(db.Model):
    __tablename__ = "anonymous_devices"

    id = db.Column(db.Integer, primary_key=True)
    device_token = db.Column(db.String(128), nullable=False, unique=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_active_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.Index("ix_device_expires_user", "expires_at", "user_id"),
    )

    def as_dict(self):
        return {
            "device_token": self.device_token,
            "expires_at": _isoformat(self.expires_at),
            "created_at": _isoformat(self.created_at),
        }


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    device_id = db.Column(
        db.Integer,
        db.ForeignKey("anonymous_devices.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=False)
    description = db.Column(db.Text, nullable=True)
    favicon = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        db.Index("ix_bookmark_user_url", "user_id", "url"),
        db.Index("ix_bookmark_user_created", "user_id", "created_at"),
        db.CheckConstraint(
            "(user_id IS NULL) <> (device_id IS NULL)", name="ck_bookmark_owner"
        ),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "favicon": self.favicon,
            "tags": list(self.tags or []),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class PageVisit(db.Model):
    __tablename__ = "page_visits"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    device_id = db.Column(
        db.Integer,
        db.ForeignKey("anonymous_devices.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=True)
    favicon = db.Column(db.Text, nullable=True)
    visited_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    duration_seconds = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.Index("ix_visit_user_url_visited", "user_id", "url", "visited_at"),
        db.Index("ix_visit_user_visited", "user_id", "visited_at"),
        db.CheckConstraint(
            "(user_id IS NULL) <> (device_id IS NULL)", name="ck_visit_owner"
        ),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "favicon": self.favicon,
            "visited_at": _isoformat(self.visited_at),
            "duration_seconds": self.duration_seconds,
        }
