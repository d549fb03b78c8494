from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import requests
from loguru import logger

from app.client.client_id import load_client_id

DEFAULT_TIMEOUT_SECONDS = 90.0
IN_FLIGHT_MESSAGE = 'The previous message has not finished yet, try again shortly'


class ApiError(Exception):
    """Non-2xx response, or a transport failure (``status == 0``)."""

    def __init__(self, message: str, status: int = 0, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class RequestInFlight(Exception):
    pass


@dataclass
class ChatReply:
    status: int
    data: dict[str, Any] = field(default_factory=dict)
    raw: str = ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _safe_json(response: requests.Response) -> Any:
    if not response.text:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class ChatApi:
    """Thin wrapper over the relay's HTTP routes.

    Every call carries the ``X-Client-Id`` header. Only one chat message may be
    in flight per instance; a second ``post_chat_message`` fails before any
    network call is made.
    """

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        api_prefix: str = '/api',
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.api_prefix = '/' + api_prefix.strip('/') if api_prefix.strip('/') else ''
        self.client_id = client_id or load_client_id()
        self.timeout = timeout
        self._http = http or requests.Session()
        self._in_flight = threading.Lock()

    def _url(self, path: str) -> str:
        return f'{self.base_url}{self.api_prefix}{path}'

    def _headers(self) -> dict[str, str]:
        return {'Content-Type': 'application/json', 'X-Client-Id': self.client_id}

    def _send(self, method: str, path: str, payload: Any = None) -> requests.Response:
        request_args: dict[str, Any] = {'headers': self._headers(), 'timeout': self.timeout}
        if payload is not None:
            request_args['json'] = payload
        try:
            return self._http.request(method, self._url(path), **request_args)
        except requests.RequestException as exc:
            raise ApiError(f'Request failed: {exc}') from exc

    def _request_json(self, method: str, path: str, payload: Any = None) -> dict[str, Any]:
        response = self._send(method, path, payload)
        data = _safe_json(response)
        if not response.ok:
            message = data.get('error') if isinstance(data, dict) else None
            raise ApiError(message or response.reason or 'Request failed', response.status_code, data)
        return data if isinstance(data, dict) else {}

    def fetch_config(self) -> dict[str, Any]:
        return self._request_json('GET', '/config')

    def fetch_sessions(self) -> list[dict[str, Any]]:
        data = self._request_json('GET', '/sessions')
        sessions = data.get('sessions')
        return sessions if isinstance(sessions, list) else []

    def fetch_session(self, session_id: str) -> Optional[dict[str, Any]]:
        if not session_id:
            raise ValueError('session_id must not be empty')
        data = self._request_json('GET', f'/sessions/{quote(session_id, safe="")}')
        session = data.get('session')
        return session if isinstance(session, dict) else None

    def create_session(self, title: Optional[str] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {'clientId': self.client_id}
        if isinstance(title, str) and title.strip():
            payload['title'] = title.strip()
        return self._request_json('POST', '/sessions', payload)

    def delete_session(self, session_id: str) -> None:
        if not session_id:
            return
        self._request_json('DELETE', f'/sessions/{quote(session_id, safe="")}')

    def post_chat_message(
        self,
        chat_input: str,
        session_id: Optional[str],
        message_id: Optional[str] = None,
        message_time: Optional[int] = None,
    ) -> ChatReply:
        if not self._in_flight.acquire(blocking=False):
            raise RequestInFlight(IN_FLIGHT_MESSAGE)
        try:
            payload = {
                'chatInput': chat_input,
                'sessionId': session_id,
                'messageId': message_id,
                'messageTime': message_time,
                'clientId': self.client_id,
            }
            response = self._send('POST', '/chat', payload)
            raw = response.text
            data = _safe_json(response) if raw else {}
            if not isinstance(data, dict):
                data = {'reply': raw}
            logger.debug('POST /chat answered {} ({} bytes)', response.status_code, len(raw))
            return ChatReply(status=response.status_code, data=data, raw=raw)
        finally:
            self._in_flight.release()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()
