import secrets
import time
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.dialects.mysql import DATETIME as MySQLDateTime
from sqlmodel import Field, SQLModel

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'

def utc_now():
    return datetime.now(timezone.utc)

def _base36(value: int) -> str:
    if value <= 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))

def now_ms() -> int:
    return int(time.time() * 1000)

def new_id(prefix: str, random_length: int = 8) -> str:
    random_part = ''.join(secrets.choice(_BASE36) for _ in range(random_length))
    return f'{prefix}_{_base36(now_ms())}_{random_part}'

def gen_session_id() -> str:
    return new_id('sess', 8)

def gen_message_id() -> str:
    return new_id('msg', 6)

class TimestampModel(SQLModel):
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True).with_variant(MySQLDateTime(fsp=6), "mysql"),
        sa_column_kwargs={"nullable": False},
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True).with_variant(MySQLDateTime(fsp=6), "mysql"),
        sa_column_kwargs={"nullable": False, "onupdate": utc_now},
    )


def to_epoch_ms(value) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    try:
        return int(value)
    except (TypeError, ValueError):
        return now_ms()
