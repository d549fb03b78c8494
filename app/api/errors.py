from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from app.core.errors import (
    ChatError,
    InvalidRequest,
    OwnershipMismatch,
    SessionNotFound,
    UpstreamBusy,
    UpstreamFailure,
)

ERROR_STATUS: tuple[tuple[type[ChatError], int], ...] = (
    (InvalidRequest, status.HTTP_400_BAD_REQUEST),
    (SessionNotFound, status.HTTP_404_NOT_FOUND),
    (OwnershipMismatch, status.HTTP_404_NOT_FOUND),
    (UpstreamBusy, status.HTTP_429_TOO_MANY_REQUESTS),
    (UpstreamFailure, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: ChatError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: ChatError) -> dict[str, Any]:
    body: dict[str, Any] = {'error': str(exc)}
    if isinstance(exc, UpstreamFailure):
        body['details'] = exc.details if exc.details is not None else exc.status_code
    # Ownership is never disclosed, a foreign session simply does not exist.
    if isinstance(exc, (OwnershipMismatch, SessionNotFound)):
        body['error'] = 'Session not found'
    elif exc.session_id:
        body['sessionId'] = exc.session_id
    return body


async def handle_chat_error(_: Request, exc: ChatError) -> JSONResponse:
    code = status_for(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error('Chat request failed: {}', exc)
    return JSONResponse(status_code=code, content=error_body(exc))


async def handle_unexpected_error(_: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error('Unhandled error: {}', exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'error': 'Internal server error'},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, handle_chat_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
