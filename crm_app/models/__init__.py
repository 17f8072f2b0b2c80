# crm_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .client import Client, ClientGroup, ClientPhone, ClientStatus, Region, client_group_members
from .importer import ImportConfigRecord, ImportRun, ImportRunStatus
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    # Client models
    "Client",
    "ClientGroup",
    "ClientPhone",
    "Region",
    "client_group_members",
    # Client enums
    "ClientStatus",
    # Importer models
    "ImportConfigRecord",
    "ImportRun",
    "ImportRunStatus",
]
