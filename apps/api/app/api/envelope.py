"""Uniform ``{data, error}`` response envelope and the exception handlers that produce it."""

from __future__ import annotations

import logging
from typing import Any, Generic, TypeVar

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.context import get_correlation_id


logger = logging.getLogger("app.errors")

DataT = TypeVar("DataT")

_STARLETTE_DETAIL_CODES = {
    "Not Found": "not_found",
    "Method Not Allowed": "method_not_allowed",
    "Unauthorized": "unauthorized",
    "Forbidden": "forbidden",
}


class Envelope(BaseModel, Generic[DataT]):
    data: DataT | None = None
    error: str | None = None


class ItemsPage(BaseModel, Generic[DataT]):
    items: list[DataT]


class CountedPage(BaseModel, Generic[DataT]):
    items: list[DataT]
    total: int


def ok(data: Any) -> dict[str, Any]:
    return {"data": data, "error": None}


def items(rows: list[Any]) -> dict[str, Any]:
    return {"data": {"items": rows}, "error": None}


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    details: Any | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"data": None, "error": code}
    if details is not None:
        content["details"] = details
    response = JSONResponse(status_code=status_code, content=content, headers=headers)
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    if correlation_id:
        response.headers["x-correlation-id"] = correlation_id
    return response


def _code_for(detail: Any, status_code: int) -> str:
    if isinstance(detail, str) and detail:
        return _STARLETTE_DETAIL_CODES.get(detail, detail)
    if status_code == 404:
        return "not_found"
    return "http_error"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=_code_for(exc.detail, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    locations = {error.get("loc", ("",))[0] for error in errors}
    code = "invalid_id" if errors and locations == {"path"} else "invalid_payload"
    return error_response(request, status_code=400, code=code, details=jsonable_encoder(errors))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("http.unhandled_exception", extra={"path": request.url.path, "error": str(exc)[:500]})
    return error_response(request, status_code=500, code="internal_error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
