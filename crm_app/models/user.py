# crm_app/models/user.py

from .base import BaseModel, db


class User(BaseModel):
    """Operator account owning clients, groups, regions and import configs."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_super_admin = db.Column(db.Boolean, default=False, nullable=False)  # may search all users' clients

    def __repr__(self):
        return f"<User {self.username}>"
