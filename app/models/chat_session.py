from sqlmodel import Field, SQLModel
from app.models.base import TimestampModel, gen_session_id

DEFAULT_SESSION_TITLE = 'New chat'
LEGACY_OWNER = 'global'


class ChatSession(TimestampModel, SQLModel, table=True):
    __tablename__ = 'sessions'

    id: str = Field(default_factory=gen_session_id, primary_key=True, max_length=64)
    title: str = Field(default=DEFAULT_SESSION_TITLE, max_length=255)
    owner: str = Field(default=LEGACY_OWNER, index=True, max_length=128)
    title_locked: bool = Field(default=False)
