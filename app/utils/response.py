from datetime import datetime
from typing import Any, Optional, Dict
from bson import ObjectId
from fastapi.responses import JSONResponse

from app.core.errors import ArenaError, ValidationError


def success_response(
    message: str = "Success",
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """
    Standard success response

    Args:
        message: Success message
        data: Response data (optional)
        status_code: HTTP status code (default: 200)

    Returns:
        JSONResponse with success format
    """
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = data

    return JSONResponse(content=response, status_code=status_code)


def error_response(
    message: str = "Error",
    status_code: int = 400,
    error: Optional[str] = None
) -> JSONResponse:
    """
    Standard error response

    Args:
        message: Error message
        status_code: HTTP status code (default: 400)
        error: Machine-readable error kind (optional)

    Returns:
        JSONResponse with error format
    """
    content = {
        "success": False,
        "message": message
    }
    if error:
        content["error"] = error

    return JSONResponse(content=content, status_code=status_code)


def validation_error_response(
    message: str = "Validation error",
    errors: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """
    Standard validation error response

    Args:
        message: Validation error message
        errors: Dictionary of validation errors (optional)

    Returns:
        JSONResponse with validation error format (422)
    """
    response = {
        "success": False,
        "message": message,
        "error": ValidationError.kind
    }

    if errors:
        response["errors"] = errors

    return JSONResponse(content=response, status_code=422)


def arena_error_response(exc: ArenaError) -> JSONResponse:
    """Map a domain error to the envelope with its HTTP status"""
    if isinstance(exc, ValidationError):
        return validation_error_response(exc.message, exc.errors)
    return error_response(message=exc.message, status_code=exc.status_code, error=exc.kind)


def serialize_document(document: Dict[str, Any], exclude: tuple = ()) -> Dict[str, Any]:
    """Mongo document -> JSON-safe dict (`_id` becomes `id`)"""
    result = {}
    for key, value in document.items():
        if key in exclude:
            continue
        if key == "_id":
            key = "id"
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        result[key] = value
    return result
