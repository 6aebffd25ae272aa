"""Security event response schemas."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class SecurityEventResponse(BaseModel):
    id: int
    user_id: Optional[int]
    event_type: str
    severity: str
    family_id: Optional[str]
    ip_address: Optional[str]
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime]
