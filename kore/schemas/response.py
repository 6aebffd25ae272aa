"""Generic API response schemas"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from kore.core.timeutils import utcnow


def _now_iso() -> str:
    return utcnow().isoformat()


class APIResponse(BaseModel):
    """Generic API success response"""
    success: bool = True
    message: str
    data: Optional[Any] = None
    timestamp: str = Field(default_factory=_now_iso)


class ErrorResponse(BaseModel):
    """Generic API error response"""
    success: bool = False
    error: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_now_iso)
