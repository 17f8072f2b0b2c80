# crm_app/models/client/enums.py

import enum


class ClientStatus(str, enum.Enum):
    """Lifecycle marker used by campaigns to tell fresh leads from known clients."""

    NEW = "NEW"
    OLD = "OLD"

    @classmethod
    def coerce(cls, value):
        """Return the matching status for ``value`` (case-insensitive) or ``None``."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        token = str(value).strip().upper()
        for member in cls:
            if member.value == token:
                return member
        return None
