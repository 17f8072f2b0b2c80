# crm_app/models/client/base.py
"""
Client records and the groups they are organised into.

A client belongs to exactly one owner (the owner of the group it was
imported into) and may be a member of any number of that owner's groups.
"""

from sqlalchemy import Enum, Index

from ...utils.names import name_key
from ..base import BaseModel, db
from .enums import ClientStatus

client_group_members = db.Table(
    "client_group_members",
    db.Column("client_id", db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True),
    db.Column("group_id", db.Integer, db.ForeignKey("client_groups.id", ondelete="CASCADE"), primary_key=True),
)


class ClientGroup(BaseModel):
    """Named list of clients used as a campaign audience."""

    __tablename__ = "client_groups"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    owner = db.relationship("User", foreign_keys=[user_id])
    clients = db.relationship("Client", secondary=client_group_members, back_populates="groups")

    def __repr__(self):
        return f"<ClientGroup {self.name}>"


class Client(BaseModel):
    """A messaging recipient with one or more phone numbers."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Name fields; imports may create clients without any name
    last_name = db.Column(db.String(100), nullable=False, default="")
    first_name = db.Column(db.String(100), nullable=False, default="")
    middle_name = db.Column(db.String(100), nullable=True)
    name_key = db.Column(db.String(320), nullable=True, index=True)

    region_id = db.Column(db.Integer, db.ForeignKey("regions.id"), nullable=True, index=True)
    status = db.Column(
        Enum(ClientStatus, name="client_status_enum"),
        default=ClientStatus.NEW,
        nullable=False,
        index=True,
    )

    owner = db.relationship("User", foreign_keys=[user_id])
    region = db.relationship("Region", back_populates="clients")
    phones = db.relationship(
        "ClientPhone",
        back_populates="client",
        cascade="all, delete-orphan",
        order_by="ClientPhone.id",
    )
    groups = db.relationship("ClientGroup", secondary=client_group_members, back_populates="clients")

    __table_args__ = (Index("idx_client_owner_name_key", "user_id", "name_key"),)

    def __repr__(self):
        return f"<Client {self.get_full_name() or self.id}>"

    def get_full_name(self) -> str:
        parts = [self.last_name, self.first_name, self.middle_name]
        return " ".join(part for part in parts if part)

    def has_name(self) -> bool:
        return bool(self.last_name or self.first_name)

    def set_name(self, *, last_name=None, first_name=None, middle_name=None) -> None:
        self.last_name = last_name or ""
        self.first_name = first_name or ""
        self.middle_name = middle_name or None
        self.name_key = name_key(self.get_full_name())

    def phone_numbers(self) -> tuple[str, ...]:
        return tuple(phone.phone for phone in self.phones)

    def group_ids(self) -> tuple[int, ...]:
        return tuple(sorted(group.id for group in self.groups))
