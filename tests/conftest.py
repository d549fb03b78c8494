import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Union
from uuid import uuid4

import pytest

TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="chat-relay-tests-"))
TEST_DB_URL = os.getenv("TEST_DB_URL", f"sqlite:///{TEST_DB_DIR / 'test.db'}")
os.environ["DB_URL"] = TEST_DB_URL
os.environ.setdefault("AUTOMATION_WEBHOOK_URL", "http://automation.test/webhook/chat")

from sqlmodel import Session

from app.core.config import settings
from app.db.init_db import init_db
from app.db.session import engine
from app.services.chat_turn import reset_chat_turn_service

settings.DB_URL = TEST_DB_URL


class FakeAutomationClient:
    """Stands in for the webhook; replies are canned values or callables."""

    def __init__(self, reply: Union[Any, Callable[[dict], Any]] = None, configured: bool = True) -> None:
        self.reply = reply
        self.configured = configured
        self.calls: list[dict] = []

    def send(self, payload: dict) -> Any:
        self.calls.append(payload)
        if isinstance(self.reply, BaseException):
            raise self.reply
        if callable(self.reply):
            return self.reply(payload)
        return self.reply


@pytest.fixture(autouse=True, scope="session")
def _configure_test_database():
    init_db(drop_all=True)
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _reset_services():
    reset_chat_turn_service()
    yield
    reset_chat_turn_service()


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client_id() -> str:
    return f"client_{uuid4()}"


@pytest.fixture
def make_engine() -> Callable[..., FakeAutomationClient]:
    def _make(reply: Optional[Any] = None, configured: bool = True) -> FakeAutomationClient:
        return FakeAutomationClient(reply, configured)

    return _make
