"""Generic API response schemas"""

from pydantic import BaseModel
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Success envelope: {success, data}"""
    success: bool = True
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """Error envelope: {success, error, code, details}"""
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
