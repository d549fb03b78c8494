from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from app.client.api import ApiError, ChatApi

DEFAULT_TABLE_ROWS = 30
DEFAULT_TABLE_MAX_ROWS = 200
ROW_SETTING_MAX = 5000


def _parse_rows(value: Any, current: int) -> int:
    if value is None or isinstance(value, bool):
        return current
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return current
    if parsed < 0:
        return current
    return min(parsed, ROW_SETTING_MAX)


@dataclass
class DisplayConfig:
    """Row limits the client uses to collapse and cap rendered tables."""

    table_default_rows: int = DEFAULT_TABLE_ROWS
    table_max_rows: int = DEFAULT_TABLE_MAX_ROWS

    def apply(self, data: Any) -> 'DisplayConfig':
        if not isinstance(data, dict):
            return self
        self.table_default_rows = _parse_rows(data.get('table_default_rows'), self.table_default_rows)
        self.table_max_rows = _parse_rows(data.get('table_max_rows'), self.table_max_rows)
        if self.table_max_rows and self.table_default_rows > self.table_max_rows:
            self.table_max_rows = self.table_default_rows
        return self


def load_display_config(api: ChatApi, config: Optional[DisplayConfig] = None) -> DisplayConfig:
    config = config or DisplayConfig()
    try:
        data = api.fetch_config()
    except ApiError as exc:
        logger.warning('Config load failed, keeping default table settings: {}', exc)
        return config
    return config.apply(data)
