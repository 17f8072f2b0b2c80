# crm_app/models/client/info.py

from sqlalchemy import Index

from ..base import BaseModel, db


class ClientPhone(BaseModel):
    """Normalized phone number attached to a client."""

    __tablename__ = "client_phones"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    phone = db.Column(db.String(20), nullable=False)

    client = db.relationship("Client", back_populates="phones")

    __table_args__ = (
        Index("idx_client_phone", "phone"),
        db.UniqueConstraint("client_id", "phone", name="_client_phone_uc"),
    )

    def __repr__(self):
        return f"<ClientPhone {self.phone}>"


class Region(BaseModel):
    """Region directory entry, unique per owner by case-insensitive name."""

    __tablename__ = "regions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    name_key = db.Column(db.String(100), nullable=False)

    clients = db.relationship("Client", back_populates="region")

    __table_args__ = (db.UniqueConstraint("user_id", "name_key", name="_region_owner_name_uc"),)

    def __repr__(self):
        return f"<Region {self.name}>"
