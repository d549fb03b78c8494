from enum import Enum
import sqlalchemy as sa
from sqlalchemy import Column


class ChatRole(str, Enum):
    USER = 'user'
    BOT = 'bot'


def enum_column(enum_cls: type[Enum], name: str) -> Column:
    return Column(
        sa.Enum(
            enum_cls,
            values_callable=lambda enum: [item.value for item in enum],
            name=name,
            native_enum=False,
            length=16,
        ),
        nullable=False,
    )
