from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.v1.deps import get_client_id
from app.db.session import get_session
from app.schemas.chat import ChatRequest, ChatResponse
from app.services.chat_service import normalize_client_id
from app.services.chat_turn import ChatTurnService, get_chat_turn_service

router = APIRouter(tags=['chat'])


@router.post('/chat', response_model=ChatResponse, response_model_by_alias=True, response_model_exclude_none=True)
def post_chat_message(
    payload: ChatRequest,
    session: Session = Depends(get_session),
    client_id: Optional[str] = Depends(get_client_id),
    service: ChatTurnService = Depends(get_chat_turn_service),
) -> ChatResponse:
    owner = client_id or normalize_client_id(payload.client_id)
    return service.run(session, owner, payload)
