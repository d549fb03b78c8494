from sqlmodel import select

from app.db.session import get_session
from app.models.chat_session import ChatSession


def test_session_dependency():
    gen = get_session()
    session = next(gen)
    assert session is not None
    assert isinstance(session.exec(select(ChatSession)).all(), list)
    session.close()
