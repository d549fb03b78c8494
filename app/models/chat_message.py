from typing import Optional
from sqlalchemy import BigInteger, Column, Text
from sqlmodel import Field, SQLModel
from app.models.base import TimestampModel, gen_message_id, now_ms
from app.models.enums import ChatRole, enum_column


class ChatMessage(TimestampModel, SQLModel, table=True):
    __tablename__ = 'messages'

    id: str = Field(default_factory=gen_message_id, primary_key=True, max_length=64)
    session_id: str = Field(index=True, foreign_key='sessions.id', max_length=64)
    role: ChatRole = Field(sa_column=enum_column(ChatRole, 'chat_role'))
    text: str = Field(default='', sa_column=Column(Text, nullable=False))
    time: int = Field(default_factory=now_ms, sa_column=Column(BigInteger, nullable=False, index=True))
    table_summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    table_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
