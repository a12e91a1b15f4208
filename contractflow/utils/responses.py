from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request

from contractflow.core.exceptions import AppError
from contractflow.schemas.common import ApiErrorResponse, ApiResponse, ErrorBody, ResponseMeta


def _response_meta(request: Optional[Request], api_version: str) -> ResponseMeta:
    request_id = str(uuid4())
    if request is not None and hasattr(request.state, "request_id"):
        request_id = request.state.request_id

    return ResponseMeta(
        timestamp=datetime.now(timezone.utc),
        request_id=request_id,
        api_version=api_version,
    )


def create_api_response(
    data: Any,
    message: str = "Operation successful",
    status: bool = True,
    request: Optional[Request] = None,
    api_version: str = "v1",
) -> Dict[str, Any]:
    """Create a standardized API response as a dictionary.

    Returns a dict to be compatible with FastAPI's response_model=dict.
    """
    data_dict: Dict[str, Any] = {}
    if isinstance(data, dict):
        data_dict = data
    elif hasattr(data, "model_dump"):
        data_dict = data.model_dump(mode="json")
    elif isinstance(data, list):
        data_dict = {"items": [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in data]}
    elif data is not None:
        data_dict = {"value": data}

    response = ApiResponse(
        status=status,
        message=message,
        data=data_dict,
        meta=_response_meta(request, api_version),
    )
    return response.model_dump(mode="json")


def create_error_response(
    code: str,
    message: str,
    details: Optional[str] = None,
    retryable: bool = False,
    request: Optional[Request] = None,
    api_version: str = "v1",
) -> Dict[str, Any]:
    """Create the error envelope ``{status: false, message, error, meta}``."""
    response = ApiErrorResponse(
        message=message,
        error=ErrorBody(code=code, message=message, details=details, retryable=retryable),
        meta=_response_meta(request, api_version),
    )
    return response.model_dump(mode="json")


def error_response_from(error: AppError, request: Optional[Request] = None) -> Dict[str, Any]:
    return create_error_response(
        code=error.code,
        message=error.message,
        details=error.details,
        retryable=error.retryable,
        request=request,
    )
