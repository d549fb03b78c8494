from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from app.client.api import ApiError, ChatApi, RequestInFlight
from app.client.config import DisplayConfig, load_display_config
from app.client.session_store import SessionStore
from app.schemas.chat import SessionOut, Table
from app.services.table_sanitizer import sanitize_tables

BUSY_STATUS = 429


@dataclass
class TurnOutcome:
    ok: bool
    reply: str = ''
    error: Optional[str] = None
    session_id: Optional[str] = None
    tables: list[Table] = field(default_factory=list)


class ChatController:
    """Drives a conversation the way the web UI does, without any UI."""

    def __init__(self, api: ChatApi, store: Optional[SessionStore] = None) -> None:
        self.api = api
        self.store = store or SessionStore(api)
        self.config = DisplayConfig()
        self._sending = False

    @property
    def sending(self) -> bool:
        return self._sending

    def start(self) -> Optional[SessionOut]:
        self.config = load_display_config(self.api, self.config)
        try:
            self.store.load()
        except ApiError as exc:
            logger.warning('Session load failed, starting with a new session: {}', exc)
            self.store.set_sessions([])
        if not self.store.sessions or self.store.current_session is None:
            self.store.create_session()
        return self.store.current_session

    def select_session(self, session_id: str) -> None:
        previous = self.store.current_session_id
        self.store.current_session_id = session_id
        if previous and previous != session_id:
            self.store.prune_empty_session(previous)

    def new_chat(self) -> Optional[SessionOut]:
        return self.store.create_session()

    def delete_session(self, session_id: str) -> None:
        self.store.delete_session(session_id)

    def outside_click(self) -> bool:
        """Drop the current session if it is still empty; True when anything changed."""
        before = (len(self.store.sessions), self.store.current_session_id)
        self.store.prune_if_current_empty()
        return before != (len(self.store.sessions), self.store.current_session_id)

    def send_message(self, text: Any) -> TurnOutcome:
        if self._sending:
            return TurnOutcome(ok=False, error='A message is already being sent')
        chat_input = text.strip() if isinstance(text, str) else ''
        if not chat_input:
            return TurnOutcome(ok=False, error='Message is empty')
        session = self.store.current_session
        if session is None:
            return TurnOutcome(ok=False, error='No active session')

        local_session_id = session.id
        self._sending = True
        try:
            optimistic = self.store.add_user_message(local_session_id, chat_input)
            try:
                reply = self.api.post_chat_message(
                    chat_input,
                    local_session_id,
                    message_id=optimistic.id if optimistic else None,
                    message_time=optimistic.time if optimistic else None,
                )
            except (RequestInFlight, ApiError) as exc:
                logger.warning('Sending message failed: {}', exc)
                return TurnOutcome(ok=False, error=str(exc), session_id=local_session_id)

            if reply.status == BUSY_STATUS:
                # The server rejected the turn before storing anything.
                if optimistic is not None:
                    self.store.remove_message(local_session_id, optimistic.id)
                return TurnOutcome(
                    ok=False,
                    error=str(reply.data.get('error') or 'Busy, try again shortly'),
                    session_id=local_session_id,
                )

            session_id = self.store.apply_chat_response(local_session_id, reply.data, optimistic)
            if not reply.ok:
                return TurnOutcome(
                    ok=False,
                    error=str(reply.data.get('error') or f'Request failed with status {reply.status}'),
                    session_id=session_id,
                )
            return TurnOutcome(
                ok=True,
                reply=str(reply.data.get('reply') or ''),
                session_id=session_id,
                tables=sanitize_tables(reply.data.get('tables')),
            )
        finally:
            self._sending = False
