from datetime import datetime
from math import ceil
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel


def _encode(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, mode="json")
    if isinstance(data, list):
        return [_encode(item) for item in data]
    if isinstance(data, dict):
        return {key: _encode(value) for key, value in data.items()}
    return jsonable_encoder(data)


def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def success_response(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    body = {
        "success": True,
        "data": _encode(data),
        "message": message,
        "timestamp": _timestamp(),
    }
    return JSONResponse(content=body, status_code=status_code)


def error_response(
    error: str,
    status_code: int = 500,
    validation_errors: Optional[List[Dict[str, str]]] = None,
    details: Optional[Any] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {
        "success": False,
        "error": error,
        "timestamp": _timestamp(),
    }
    if validation_errors is not None:
        body["validationErrors"] = validation_errors
    if details is not None:
        body["details"] = _encode(details)
    return JSONResponse(content=body, status_code=status_code)


def paginated_response(
    data: Any,
    page: int,
    limit: int,
    total: int,
    message: Optional[str] = None,
) -> JSONResponse:
    body = {
        "success": True,
        "data": _encode(data),
        "message": message,
        "timestamp": _timestamp(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": ceil(total / limit) if limit else 0,
        },
    }
    return JSONResponse(content=body)
