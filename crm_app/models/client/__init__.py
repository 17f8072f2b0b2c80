# crm_app/models/client/__init__.py
"""
Client models package
"""

from .base import Client, ClientGroup, client_group_members
from .enums import ClientStatus
from .info import ClientPhone, Region

__all__ = [
    "Client",
    "ClientGroup",
    "ClientPhone",
    "ClientStatus",
    "Region",
    "client_group_members",
]
