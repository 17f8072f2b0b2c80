# crm_app/models/base.py

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(db.Model):
    """Abstract base carrying audit timestamps for every table."""

    __abstract__ = True

    created_at = db.Column(db.DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def touch(self) -> None:
        """Bump ``updated_at`` for changes that only affect related rows."""
        self.updated_at = utc_now()
