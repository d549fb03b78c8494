from __future__ import annotations

import json
from typing import Any, Optional

import requests
from loguru import logger

from app.core.config import settings
from app.core.errors import UpstreamFailure, UpstreamNotConfigured

RESPONSE_PREVIEW_LENGTH = 500


def _decode_body(response: requests.Response) -> Any:
    if not response.text.strip():
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class AutomationClient:
    """Forwards one chat turn to the automation engine webhook."""

    def __init__(
        self,
        url: str,
        api_key: str = '',
        timeout: float = 60.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.url = (url or '').strip()
        self.api_key = (api_key or '').strip()
        self.timeout = timeout
        self._http = http or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def _headers(self) -> dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        return headers

    def send(self, payload: dict[str, Any]) -> Any:
        if not self.configured:
            raise UpstreamNotConfigured()
        logger.info(json.dumps({'event': 'chat.upstream.request', 'payload': payload}, ensure_ascii=False))
        try:
            response = self._http.post(self.url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamFailure(
                f'Automation engine did not answer within {self.timeout:g}s', details=str(exc)
            ) from exc
        except requests.RequestException as exc:
            raise UpstreamFailure(f'Automation engine request failed: {exc}', details=str(exc)) from exc

        data = _decode_body(response)
        logger.info(
            json.dumps(
                {
                    'event': 'chat.upstream.response',
                    'status': response.status_code,
                    'preview': response.text[:RESPONSE_PREVIEW_LENGTH],
                },
                ensure_ascii=False,
            )
        )
        if not 200 <= response.status_code < 300:
            raise UpstreamFailure(
                f'Automation engine request failed: {response.status_code}',
                status_code=response.status_code,
                details=data,
            )
        return data


def build_automation_client() -> AutomationClient:
    return AutomationClient(
        url=settings.AUTOMATION_WEBHOOK_URL,
        api_key=settings.AUTOMATION_API_KEY,
        timeout=settings.AUTOMATION_TIMEOUT_SECONDS,
    )
