from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import (
    ChatError,
    InvalidRequest,
    OwnershipMismatch,
    StorageFailure,
    UpstreamNotConfigured,
)
from app.models.base import gen_session_id
from app.schemas.chat import ChatRequest, ChatResponse
from app.services import chat_service
from app.services.automation_client import AutomationClient, build_automation_client
from app.services.session_locks import SessionLockRegistry
from app.services.table_extractor import extract_reply
from app.services.table_sanitizer import sanitize_tables


def _log_turn_failure(exc: ChatError) -> None:
    logger.warning(
        json.dumps(
            {'event': 'chat.turn.failed', 'session_id': exc.session_id, 'error': str(exc)},
            ensure_ascii=False,
        )
    )


class ChatTurnService:
    """Runs one user turn: persist, forward, extract, persist the reply.

    The lock registry lives on the instance so independent services never
    share in-flight state.
    """

    def __init__(
        self,
        client: AutomationClient,
        locks: Optional[SessionLockRegistry] = None,
        row_limit: Optional[int] = None,
    ) -> None:
        self.client = client
        self.locks = locks or SessionLockRegistry()
        self._row_limit = row_limit

    @property
    def row_limit(self) -> int:
        return settings.TABLE_MAX_ROWS if self._row_limit is None else self._row_limit

    def run(self, session: Session, client_id: Any, payload: ChatRequest) -> ChatResponse:
        owner = chat_service.require_client_id(client_id)
        chat_input = payload.resolved_input()
        if not chat_input:
            raise InvalidRequest('chatInput must not be empty')
        if not self.client.configured:
            raise UpstreamNotConfigured()

        session_id = chat_service.normalize_identifier(payload.session_id) or gen_session_id()
        try:
            with self.locks.turn() as lease:
                lease.lock(session_id)
                session_id = self._claim_session(session, lease, session_id, owner)
                return self._forward(session, session_id, owner, chat_input, payload)
        except ChatError as exc:
            if exc.session_id is None:
                exc.session_id = session_id
            _log_turn_failure(exc)
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            failure = StorageFailure(session_id)
            logger.opt(exception=exc).error('Chat storage failed for session {}', session_id)
            _log_turn_failure(failure)
            raise failure from exc

    def _claim_session(self, session: Session, lease, session_id: str, owner: str) -> str:
        try:
            chat_service.ensure_session(session, session_id, owner)
        except OwnershipMismatch:
            replacement = chat_service.create_session(session, owner)
            logger.info('Session {} belongs to another client, continuing in {}', session_id, replacement.id)
            lease.lock(replacement.id)
            return replacement.id
        return session_id

    def _forward(
        self,
        session: Session,
        session_id: str,
        owner: str,
        chat_input: str,
        payload: ChatRequest,
    ) -> ChatResponse:
        user_message_id = chat_service.add_user_message(
            session,
            session_id,
            owner,
            chat_input,
            message_id=payload.message_id,
            time=payload.message_time,
        )
        reply = self.client.send(
            {
                'chatInput': chat_input,
                'sessionId': session_id,
                'messageId': user_message_id,
                'clientId': owner,
            }
        )
        extracted = extract_reply(reply, max_rows=self.row_limit or None)
        tables = sanitize_tables(extracted.raw_tables, row_limit=self.row_limit)
        bot_message_id = chat_service.add_bot_message(
            session,
            session_id,
            owner,
            extracted.text,
            tables,
            row_limit=self.row_limit,
        )
        return ChatResponse(
            reply=extracted.text,
            tables=tables,
            session_id=session_id,
            user_message_id=user_message_id,
            bot_message_id=bot_message_id,
            session=chat_service.get_session_with_messages(session, session_id, owner),
        )


@lru_cache
def get_chat_turn_service() -> ChatTurnService:
    return ChatTurnService(build_automation_client())


def reset_chat_turn_service() -> None:
    get_chat_turn_service.cache_clear()
