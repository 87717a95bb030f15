"""Audit event response schemas."""

from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import Field

from app.schemas.user import CamelModel


class AuditEventResponse(CamelModel):
    id: int
    user_id: Optional[int]
    email: Optional[str] = None
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    ip_address: Optional[str]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime]
