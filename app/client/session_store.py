"""Client-side mirror of the relay's sessions.

Inbound payloads are normalized with the same rules the server applies before
they are merged, so locally built and server built sessions look alike.
"""
from __future__ import annotations

import math
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel

from app.client.api import ApiError, ChatApi
from app.models.base import new_id, now_ms
from app.models.chat_session import DEFAULT_SESSION_TITLE
from app.models.enums import ChatRole
from app.schemas.chat import MessageOut, SessionOut, Table, TableSummary
from app.services.table_sanitizer import (
    build_table_summary,
    sanitize_table,
    sanitize_table_summary,
    sanitize_tables,
)

MAX_STORED_SESSIONS = 100
MAX_MESSAGES_PER_SESSION = 200
NO_REPLY_TEXT = '(no response)'


def _as_dict(value: Any) -> Optional[dict[str, Any]]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, dict):
        return value
    return None


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _non_blank(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _finite_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _keep_newest(messages: list[MessageOut]) -> list[MessageOut]:
    return messages[-MAX_MESSAGES_PER_SESSION:]


def temp_message_id(role: ChatRole) -> str:
    return new_id(f'{role.value}_tmp', 6)


def normalize_table(table: Any, index: int = 0) -> Optional[Table]:
    return sanitize_table(table, index)


def normalize_message(message: Any, index: int = 0) -> Optional[MessageOut]:
    payload = _as_dict(message)
    if payload is None:
        return None
    time = _finite_int(payload.get('time'))
    text = payload.get('text')
    return MessageOut(
        id=_non_blank(payload.get('id')) or f'msg_{index}_{now_ms()}',
        session_id=_non_blank(_pick(payload, 'sessionId', 'session_id')),
        role=ChatRole.USER if payload.get('role') == ChatRole.USER.value else ChatRole.BOT,
        text=text if isinstance(text, str) else '',
        time=now_ms() if time is None else time,
        table_summary=sanitize_table_summary(_pick(payload, 'tableSummary', 'table_summary')),
        table_data=sanitize_tables(_pick(payload, 'tableData', 'table_data')),
    )


def normalize_session(session: Any, index: int = 0) -> Optional[SessionOut]:
    payload = _as_dict(session)
    if payload is None:
        return None
    raw_messages = payload.get('messages')
    messages: list[MessageOut] = []
    if isinstance(raw_messages, list):
        for position, item in enumerate(raw_messages):
            normalized = normalize_message(item, position)
            if normalized is not None:
                messages.append(normalized)
    updated_at = _finite_int(_pick(payload, 'updatedAt', 'updated_at'))
    return SessionOut(
        id=_non_blank(payload.get('id')) or f'sess_{index}_{now_ms()}',
        title=_non_blank(payload.get('title')) or DEFAULT_SESSION_TITLE,
        created_at=_finite_int(_pick(payload, 'createdAt', 'created_at')),
        updated_at=now_ms() if updated_at is None else updated_at,
        messages=_keep_newest(messages),
    )


def has_user_messages(session: Optional[SessionOut]) -> bool:
    if session is None:
        return False
    return any(message.role == ChatRole.USER for message in session.messages)


def display_title(session: SessionOut) -> str:
    for message in session.messages:
        if message.role == ChatRole.USER and message.text.strip():
            return message.text.strip()
    return session.title or DEFAULT_SESSION_TITLE


def _same_message(left: MessageOut, right: MessageOut) -> bool:
    if left.id == right.id:
        return True
    # The server may re-issue an id that was already taken.
    return left.role == right.role and left.text == right.text and left.time == right.time


def _contains_message(session: SessionOut, message: MessageOut) -> bool:
    return any(_same_message(item, message) for item in session.messages)


class SessionStore:
    def __init__(self, api: Optional[ChatApi] = None) -> None:
        self.api = api
        self.sessions: list[SessionOut] = []
        self.current_session_id: Optional[str] = None

    def _require_api(self) -> ChatApi:
        if self.api is None:
            raise RuntimeError('SessionStore has no api attached')
        return self.api

    def load(self) -> Optional[SessionOut]:
        self.set_sessions(self._require_api().fetch_sessions())
        return self.current_session

    def create_session(self, title: Optional[str] = None) -> Optional[SessionOut]:
        result = self._require_api().create_session(title)
        session = self.upsert_session(result.get('session'))
        if session is not None:
            self.current_session_id = session.id
        return session

    def delete_session(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            self._require_api().delete_session(session_id)
        except ApiError as exc:
            if exc.status != 404:
                raise
            logger.debug('Session {} was already gone on the server', session_id)
        self.remove_session_local(session_id)

    def set_sessions(self, items: Any) -> None:
        normalized: list[SessionOut] = []
        if isinstance(items, list):
            for index, item in enumerate(items):
                session = normalize_session(item, index)
                if session is not None:
                    normalized.append(session)
        self.sessions = normalized[:MAX_STORED_SESSIONS]
        if self.current_session_id and self.current_session is None:
            self.current_session_id = None
        if not self.current_session_id and self.sessions:
            self.current_session_id = self.sessions[0].id

    def upsert_session(self, session: Any) -> Optional[SessionOut]:
        normalized = normalize_session(session)
        if normalized is None:
            return None
        for index, item in enumerate(self.sessions):
            if item.id == normalized.id:
                self.sessions[index] = normalized
                break
        else:
            self.sessions.insert(0, normalized)
        self.sessions = self.sessions[:MAX_STORED_SESSIONS]
        if not self.current_session_id:
            self.current_session_id = normalized.id
        return normalized

    def sync_session(self, session: Any) -> Optional[SessionOut]:
        return self.upsert_session(session)

    def ensure_session(self, session: Any) -> Optional[SessionOut]:
        normalized = self.upsert_session(session)
        if normalized is not None:
            self.current_session_id = normalized.id
        return normalized

    def remove_session_local(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        remaining = [item for item in self.sessions if item.id != session_id]
        if len(remaining) == len(self.sessions):
            return
        self.sessions = remaining
        if self.current_session_id == session_id:
            self.current_session_id = remaining[0].id if remaining else None

    @property
    def current_session(self) -> Optional[SessionOut]:
        return self.get_session(self.current_session_id)

    def get_session(self, session_id: Optional[str]) -> Optional[SessionOut]:
        if not session_id:
            return None
        return next((item for item in self.sessions if item.id == session_id), None)

    def prune_empty_session(self, session_id: Optional[str]) -> bool:
        session = self.get_session(session_id)
        if session is None or has_user_messages(session):
            return False
        self.delete_session(session.id)
        return True

    def prune_if_current_empty(self) -> bool:
        return self.prune_empty_session(self.current_session_id)

    def _append(self, session_id: str, message: Any) -> Optional[MessageOut]:
        session = self.get_session(session_id)
        if session is None:
            return None
        normalized = normalize_message(message)
        session.messages = _keep_newest([*session.messages, normalized])
        session.updated_at = now_ms()
        return normalized

    def add_user_message(
        self,
        session_id: str,
        text: str,
        message_id: Optional[str] = None,
        time: Optional[int] = None,
    ) -> Optional[MessageOut]:
        return self._append(
            session_id,
            {
                'id': message_id or temp_message_id(ChatRole.USER),
                'sessionId': session_id,
                'role': ChatRole.USER.value,
                'text': text,
                'time': now_ms() if time is None else time,
            },
        )

    def add_bot_message(
        self,
        session_id: str,
        text: str,
        tables: Optional[list[Table]] = None,
        table_summary: Optional[list[TableSummary]] = None,
        message_id: Optional[str] = None,
        time: Optional[int] = None,
    ) -> Optional[MessageOut]:
        return self._append(
            session_id,
            {
                'id': message_id or temp_message_id(ChatRole.BOT),
                'sessionId': session_id,
                'role': ChatRole.BOT.value,
                'text': text,
                'time': now_ms() if time is None else time,
                'tableData': [table.to_payload() for table in tables or []],
                'tableSummary': [item.model_dump(by_alias=True) for item in table_summary or []],
            },
        )

    def remove_message(self, session_id: Optional[str], message_id: Optional[str]) -> None:
        if not session_id or not message_id:
            return
        session = self.get_session(session_id)
        if session is None:
            return
        session.messages = [item for item in session.messages if item.id != message_id]

    def _move_session(self, old_id: str, new_id: str) -> None:
        source = self.get_session(old_id)
        if source is None:
            return
        target = self.get_session(new_id)
        if target is None:
            source.id = new_id
            for message in source.messages:
                message.session_id = new_id
            return
        merged = [*target.messages]
        for message in source.messages:
            if not _contains_message(target, message):
                message.session_id = new_id
                merged.append(message)
        target.messages = _keep_newest(sorted(merged, key=lambda item: item.time))
        target.updated_at = now_ms()
        self.remove_session_local(old_id)

    def apply_chat_response(
        self,
        local_session_id: str,
        data: dict[str, Any],
        optimistic: Optional[MessageOut] = None,
    ) -> str:
        """Fold a chat response into the mirror and return the authoritative session id.

        The optimistic user message ends up exactly once in the resulting
        session, whether the server kept the session id, replaced it, or
        answered without a session payload.
        """
        session_id = _non_blank(data.get('sessionId')) or local_session_id
        was_current = self.current_session_id in (None, local_session_id)

        synced = None
        if data.get('session') is not None:
            synced = self.upsert_session(data.get('session'))

        if synced is not None:
            session_id = synced.id
            if session_id != local_session_id:
                self.remove_session_local(local_session_id)
            if optimistic is not None and not _contains_message(synced, optimistic):
                optimistic.session_id = session_id
                synced.messages = _keep_newest(sorted([*synced.messages, optimistic], key=lambda item: item.time))
        else:
            if session_id != local_session_id:
                self._move_session(local_session_id, session_id)
            tables = sanitize_tables(data.get('tables'))
            reply = _non_blank(data.get('reply')) or _non_blank(data.get('error')) or NO_REPLY_TEXT
            self.add_bot_message(
                session_id,
                reply,
                tables,
                build_table_summary(tables),
                message_id=_non_blank(data.get('botMessageId')),
            )

        if was_current:
            self.current_session_id = session_id
        return session_id
