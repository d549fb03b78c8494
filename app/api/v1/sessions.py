from typing import Optional

from fastapi import APIRouter, Body, Depends, Response, status
from sqlmodel import Session

from app.api.v1.deps import get_client_id
from app.core.errors import SessionNotFound
from app.db.session import get_session
from app.schemas.chat import SessionCreate, SessionEnvelope, SessionListOut
from app.services.chat_service import (
    create_session,
    delete_session,
    get_session_with_messages,
    list_sessions,
    normalize_client_id,
    require_client_id,
)

router = APIRouter(prefix='/sessions', tags=['sessions'])


@router.get('', response_model=SessionListOut, response_model_by_alias=True, response_model_exclude_none=True)
def list_chat_sessions(
    session: Session = Depends(get_session),
    client_id: Optional[str] = Depends(get_client_id),
) -> SessionListOut:
    owner = require_client_id(client_id)
    return SessionListOut(sessions=list_sessions(session, owner))


@router.post(
    '',
    response_model=SessionEnvelope,
    status_code=status.HTTP_201_CREATED,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def create_chat_session(
    payload: Optional[SessionCreate] = Body(default=None),
    session: Session = Depends(get_session),
    client_id: Optional[str] = Depends(get_client_id),
) -> SessionEnvelope:
    payload = payload or SessionCreate()
    owner = require_client_id(client_id or normalize_client_id(payload.client_id))
    return SessionEnvelope(session=create_session(session, owner, payload.title))


@router.get('/{session_id}', response_model=SessionEnvelope, response_model_by_alias=True, response_model_exclude_none=True)
def get_chat_session(
    session_id: str,
    session: Session = Depends(get_session),
    client_id: Optional[str] = Depends(get_client_id),
) -> SessionEnvelope:
    record = get_session_with_messages(session, session_id, require_client_id(client_id))
    if record is None:
        raise SessionNotFound(session_id)
    return SessionEnvelope(session=record)


@router.delete('/{session_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_chat_session(
    session_id: str,
    session: Session = Depends(get_session),
    client_id: Optional[str] = Depends(get_client_id),
) -> Response:
    if not delete_session(session, session_id, require_client_id(client_id)):
        raise SessionNotFound(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
