from app.models.base import TimestampModel
from app.models.chat_session import ChatSession
from app.models.chat_message import ChatMessage

__all__ = [
    'TimestampModel',
    'ChatSession',
    'ChatMessage',
]
