from typing import Any
from urllib.parse import urlparse

from loguru import logger
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROJECT_NAME = "Chat Relay API"
DEFAULT_API_V1_PREFIX = "/api"
ROW_SETTING_MAX = 5000


def _resolve_int(value: Any, *, name: str, fallback: int, minimum: int, maximum: int) -> int:
    raw = value.strip() if isinstance(value, str) else value
    if raw is None or raw == '':
        return fallback
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        parsed = None
    if parsed is not None and minimum <= parsed <= maximum:
        return parsed
    logger.warning('Invalid {} value "{}", falling back to {}', name, raw, fallback)
    return fallback


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    PROJECT_NAME: str = DEFAULT_PROJECT_NAME
    API_V1_PREFIX: str = DEFAULT_API_V1_PREFIX
    ENV: str = 'development'
    DEBUG: bool = False

    DB_URL: str = 'sqlite:///./chat_relay.db'
    LOG_LEVEL: str = 'INFO'
    CORS_ORIGINS: list[str] = ['*']
    PORT: int = 5000

    AUTOMATION_WEBHOOK_URL: str = ''
    AUTOMATION_API_KEY: str = ''
    AUTOMATION_TIMEOUT_SECONDS: float = 60.0

    TABLE_DEFAULT_ROWS: int = 30
    TABLE_MAX_ROWS: int = 200
    MAX_MESSAGES_PER_SESSION: int = 200
    MAX_STORED_SESSIONS: int = 100

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, value):  # type: ignore[override]
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return []
            if value == '*':
                return ['*']
            return [item.strip() for item in value.split(',') if item.strip()]
        return value

    @field_validator('AUTOMATION_WEBHOOK_URL', 'AUTOMATION_API_KEY', mode='before')
    @classmethod
    def strip_strings(cls, value):  # type: ignore[override]
        if value is None:
            return ''
        return str(value).strip()

    @field_validator('PORT', mode='before')
    @classmethod
    def parse_port(cls, value):  # type: ignore[override]
        return _resolve_int(value, name='PORT', fallback=5000, minimum=1, maximum=65535)

    @field_validator('TABLE_DEFAULT_ROWS', mode='before')
    @classmethod
    def parse_default_rows(cls, value):  # type: ignore[override]
        return _resolve_int(value, name='TABLE_DEFAULT_ROWS', fallback=30, minimum=0, maximum=ROW_SETTING_MAX)

    @field_validator('TABLE_MAX_ROWS', mode='before')
    @classmethod
    def parse_max_rows(cls, value):  # type: ignore[override]
        return _resolve_int(value, name='TABLE_MAX_ROWS', fallback=200, minimum=0, maximum=ROW_SETTING_MAX)

    @field_validator('MAX_MESSAGES_PER_SESSION', 'MAX_STORED_SESSIONS', mode='before')
    @classmethod
    def parse_retention(cls, value, info):  # type: ignore[override]
        fallback = 200 if info.field_name == 'MAX_MESSAGES_PER_SESSION' else 100
        return _resolve_int(value, name=info.field_name, fallback=fallback, minimum=1, maximum=100000)

    @model_validator(mode='after')
    def align_row_limits(self):
        if self.TABLE_MAX_ROWS and self.TABLE_DEFAULT_ROWS > 0 and self.TABLE_MAX_ROWS < self.TABLE_DEFAULT_ROWS:
            logger.warning(
                'TABLE_MAX_ROWS ({}) is lower than TABLE_DEFAULT_ROWS ({}), raised to {}',
                self.TABLE_MAX_ROWS,
                self.TABLE_DEFAULT_ROWS,
                self.TABLE_DEFAULT_ROWS,
            )
            self.TABLE_MAX_ROWS = self.TABLE_DEFAULT_ROWS
        return self

    @property
    def automation_host(self) -> str:
        if not self.AUTOMATION_WEBHOOK_URL:
            return ''
        parsed = urlparse(self.AUTOMATION_WEBHOOK_URL)
        return parsed.netloc or self.AUTOMATION_WEBHOOK_URL


settings = Settings()
