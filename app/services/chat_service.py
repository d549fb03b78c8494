import json
import math
from typing import Any, Optional, Sequence
from loguru import logger
from pydantic import BaseModel
from sqlmodel import Session, col, select
from app.core.config import settings
from app.core.errors import InvalidRequest, MalformedPayload, OwnershipMismatch, SessionNotFound
from app.models.base import gen_message_id, gen_session_id, now_ms, to_epoch_ms, utc_now
from app.models.chat_message import ChatMessage
from app.models.chat_session import DEFAULT_SESSION_TITLE, ChatSession
from app.models.enums import ChatRole
from app.schemas.chat import MessageOut, SessionOut
from app.services.table_sanitizer import (
    build_table_summary,
    sanitize_table_summary,
    sanitize_tables,
)

MAX_TITLE_LENGTH = 120
MAX_CLIENT_ID_LENGTH = 128
MAX_ID_LENGTH = 64


def normalize_client_id(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:MAX_CLIENT_ID_LENGTH]


def require_client_id(value: Any) -> str:
    client_id = normalize_client_id(value)
    if not client_id:
        raise InvalidRequest('Client identifier is required')
    return client_id


def normalize_identifier(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:MAX_ID_LENGTH]


def normalize_title(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_SESSION_TITLE
    return value.strip()[:MAX_TITLE_LENGTH] or DEFAULT_SESSION_TITLE


def resolve_time(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return now_ms()
    if isinstance(value, float) and not math.isfinite(value):
        return now_ms()
    return int(value)


def decode_json_column(raw: Any) -> Any:
    if raw is None:
        return None
    if isinstance(raw, (list, dict)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedPayload(str(exc)) from exc


def _load_json_column(raw: Any, message_id: str, column: str) -> Any:
    try:
        return decode_json_column(raw)
    except MalformedPayload:
        logger.warning('Malformed {} on message {}, treated as empty', column, message_id)
        return None


def encode_json_column(items: Sequence[BaseModel]) -> Optional[str]:
    if not items:
        return None
    return json.dumps(
        [item.model_dump(by_alias=True, exclude_none=True) for item in items],
        ensure_ascii=False,
    )


def get_session_record(session: Session, session_id: str) -> Optional[ChatSession]:
    return session.exec(select(ChatSession).where(ChatSession.id == session_id)).first()


def assert_session_ownership(session: Session, session_id: str, client_id: Any) -> Optional[ChatSession]:
    owner = require_client_id(client_id)
    record = get_session_record(session, session_id)
    if record is None:
        return None
    if record.owner != owner:
        raise OwnershipMismatch(session_id)
    return record


def _delete_session_rows(session: Session, record: ChatSession) -> None:
    messages = session.exec(select(ChatMessage).where(ChatMessage.session_id == record.id)).all()
    for message in messages:
        session.delete(message)
    session.flush()
    session.delete(record)


def prune_messages(session: Session, session_id: str, limit: Optional[int] = None) -> int:
    """Keep the newest ``limit`` messages of a session by (time, creation)."""
    limit = limit or settings.MAX_MESSAGES_PER_SESSION
    statement = (
        select(ChatMessage.id)
        .where(ChatMessage.session_id == session_id)
        .order_by(col(ChatMessage.time).desc(), col(ChatMessage.created_at).desc(), col(ChatMessage.id).desc())
    )
    stale = list(session.exec(statement).all())[limit:]
    if not stale:
        return 0
    for message in session.exec(select(ChatMessage).where(col(ChatMessage.id).in_(stale))).all():
        session.delete(message)
    session.commit()
    logger.debug('Pruned {} messages from session {}', len(stale), session_id)
    return len(stale)


def prune_sessions(session: Session, client_id: str, limit: Optional[int] = None) -> int:
    """Keep the ``limit`` most recently updated sessions of one client."""
    limit = limit or settings.MAX_STORED_SESSIONS
    statement = (
        select(ChatSession)
        .where(ChatSession.owner == client_id)
        .order_by(col(ChatSession.updated_at).desc(), col(ChatSession.created_at).desc())
    )
    stale = list(session.exec(statement).all())[limit:]
    if not stale:
        return 0
    for record in stale:
        _delete_session_rows(session, record)
    session.commit()
    logger.debug('Pruned {} sessions for client {}', len(stale), client_id)
    return len(stale)


def format_message(record: ChatMessage) -> MessageOut:
    summary = sanitize_table_summary(_load_json_column(record.table_summary, record.id, 'table_summary'))
    tables = sanitize_tables(_load_json_column(record.table_data, record.id, 'table_data'))
    role = ChatRole.USER if record.role == ChatRole.USER else ChatRole.BOT
    return MessageOut(
        id=record.id,
        session_id=record.session_id,
        role=role,
        text=record.text or '',
        time=to_epoch_ms(record.time),
        table_summary=summary,
        table_data=tables,
    )


def build_session_out(record: ChatSession, messages: list[MessageOut]) -> SessionOut:
    return SessionOut(
        id=record.id,
        title=record.title or DEFAULT_SESSION_TITLE,
        created_at=to_epoch_ms(record.created_at),
        updated_at=to_epoch_ms(record.updated_at),
        messages=messages,
    )


def _list_message_records(session: Session, session_ids: list[str]) -> list[ChatMessage]:
    if not session_ids:
        return []
    statement = (
        select(ChatMessage)
        .where(col(ChatMessage.session_id).in_(session_ids))
        .order_by(
            col(ChatMessage.session_id).asc(),
            col(ChatMessage.time).asc(),
            col(ChatMessage.created_at).asc(),
            col(ChatMessage.id).asc(),
        )
    )
    return list(session.exec(statement).all())


def create_session(
    session: Session,
    client_id: Any,
    title: Optional[str] = None,
    session_id: Optional[str] = None,
) -> SessionOut:
    owner = require_client_id(client_id)
    record = ChatSession(
        id=normalize_identifier(session_id) or gen_session_id(),
        title=normalize_title(title),
        owner=owner,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    prune_sessions(session, owner)
    return build_session_out(record, [])


def ensure_session(session: Session, session_id: str, client_id: Any) -> SessionOut:
    owner = require_client_id(client_id)
    record = get_session_record(session, session_id)
    if record is None:
        return create_session(session, owner, session_id=session_id)
    if record.owner != owner:
        raise OwnershipMismatch(session_id)
    return build_session_out(record, [format_message(item) for item in _list_message_records(session, [record.id])])


def get_session_with_messages(session: Session, session_id: str, client_id: Any) -> Optional[SessionOut]:
    record = assert_session_ownership(session, session_id, client_id)
    if record is None:
        return None
    messages = [format_message(item) for item in _list_message_records(session, [record.id])]
    return build_session_out(record, messages)


def list_sessions(session: Session, client_id: Any) -> list[SessionOut]:
    owner = normalize_client_id(client_id)
    if not owner:
        return []
    statement = (
        select(ChatSession)
        .where(ChatSession.owner == owner)
        .order_by(col(ChatSession.updated_at).desc(), col(ChatSession.created_at).desc())
    )
    records = list(session.exec(statement).all())
    grouped: dict[str, list[MessageOut]] = {record.id: [] for record in records}
    for message in _list_message_records(session, list(grouped)):
        grouped[message.session_id].append(format_message(message))
    return [build_session_out(record, grouped[record.id]) for record in records]


def delete_session(session: Session, session_id: str, client_id: Any) -> bool:
    owner = normalize_client_id(client_id)
    if not owner:
        return False
    record = get_session_record(session, session_id)
    if record is None or record.owner != owner:
        return False
    _delete_session_rows(session, record)
    session.commit()
    return True


def _available_message_id(session: Session, candidate: Any) -> str:
    message_id = normalize_identifier(candidate)
    if message_id is None:
        return gen_message_id()
    if session.get(ChatMessage, message_id) is not None:
        logger.debug('Message id {} already stored, allocating a new one', message_id)
        return gen_message_id()
    return message_id


def _insert_message(
    session: Session,
    record: ChatSession,
    role: ChatRole,
    text: Any,
    message_id: Any,
    time: Any,
    table_summary: Sequence[BaseModel] = (),
    table_data: Sequence[BaseModel] = (),
) -> str:
    message = ChatMessage(
        id=_available_message_id(session, message_id),
        session_id=record.id,
        role=role,
        text='' if text is None else str(text),
        time=resolve_time(time),
        table_summary=encode_json_column(table_summary),
        table_data=encode_json_column(table_data),
    )
    session.add(message)
    record.updated_at = utc_now()
    if role == ChatRole.USER and not record.title_locked:
        record.title = normalize_title(message.text)
        record.title_locked = True
    session.add(record)
    stored_id = message.id
    session.commit()
    prune_messages(session, record.id)
    return stored_id


def add_user_message(
    session: Session,
    session_id: str,
    client_id: Any,
    text: Any,
    message_id: Optional[str] = None,
    time: Any = None,
) -> str:
    record = assert_session_ownership(session, session_id, client_id)
    if record is None:
        raise SessionNotFound(session_id)
    return _insert_message(session, record, ChatRole.USER, text, message_id, time)


def add_bot_message(
    session: Session,
    session_id: str,
    client_id: Any,
    text: Any,
    table_data: Any = None,
    message_id: Optional[str] = None,
    time: Any = None,
    row_limit: Optional[int] = None,
) -> str:
    record = assert_session_ownership(session, session_id, client_id)
    if record is None:
        raise SessionNotFound(session_id)
    limit = settings.TABLE_MAX_ROWS if row_limit is None else row_limit
    tables = sanitize_tables(table_data, row_limit=limit)
    summary = build_table_summary(tables)
    return _insert_message(session, record, ChatRole.BOT, text, message_id, time, summary, tables)
