"""Database models"""

from app.models.user import User
from app.models.security import RefreshToken, OneTimeToken
from app.models.audit import AuditEvent

__all__ = ["User", "RefreshToken", "OneTimeToken", "AuditEvent"]
