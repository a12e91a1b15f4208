"""Response envelope shared by every API route."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    timestamp: datetime
    request_id: str
    api_version: str = "v1"


class ErrorBody(BaseModel):
    """Error payload carried by failed responses."""

    code: str
    message: str
    details: Optional[str] = None
    retryable: bool = False


class ApiResponse(BaseModel):
    """Standard response envelope."""

    status: bool = True
    message: str = "Operation successful"
    data: Dict[str, Any] = Field(default_factory=dict)
    meta: ResponseMeta


class ApiErrorResponse(BaseModel):
    status: bool = False
    message: str
    error: ErrorBody
    meta: ResponseMeta
