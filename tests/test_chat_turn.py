import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.core.errors import InvalidRequest, StorageFailure, UpstreamBusy, UpstreamFailure, UpstreamNotConfigured
from app.db.session import engine
from app.schemas.chat import ChatRequest
from app.services import chat_service
from app.services.chat_turn import ChatTurnService
from app.services.session_locks import SessionLockRegistry
from app.services.table_extractor import FALLBACK_REPLY


def test_turn_stores_both_messages(db_session, client_id, make_engine):
    engine_client = make_engine({"text": "Top regions", "result": [{"region": "A", "sales": "1,200"}], "chart_type": "bar"})
    service = ChatTurnService(engine_client, row_limit=50)

    response = service.run(db_session, client_id, ChatRequest(chat_input="show sales", message_id="msg_local_1"))

    assert response.reply.startswith("Top regions")
    assert response.user_message_id == "msg_local_1"
    assert [table.chart_type for table in response.tables] == ["bar"]
    assert response.tables[0].limit == 50
    assert engine_client.calls == [
        {"chatInput": "show sales", "sessionId": response.session_id, "messageId": "msg_local_1", "clientId": client_id}
    ]
    session = response.session
    assert session.title == "show sales"
    assert [message.id for message in session.messages] == ["msg_local_1", response.bot_message_id]
    assert session.messages[1].table_summary[0].total_rows == 1


def test_response_tables_match_stored_bot_message(db_session, client_id, make_engine):
    header = "h" * 119 + " tail"
    engine_client = make_engine({"text": "wide", "result": [{header: "v" * 2500}, {header: "-"}]})

    response = ChatTurnService(engine_client, row_limit=50).run(db_session, client_id, ChatRequest(chat_input="wide table"))

    stored = response.session.messages[-1]
    assert stored.id == response.bot_message_id
    assert [table.to_payload() for table in response.tables] == [table.to_payload() for table in stored.table_data]
    assert response.tables[0].headers == ["h" * 119]
    assert response.tables[0].total_rows == 1


def test_database_failure_is_reported_with_session_id(db_session, client_id, make_engine):
    def database_down(payload):
        raise OperationalError("INSERT INTO messages", {}, Exception("database is locked"))

    service = ChatTurnService(make_engine(database_down))
    session_id = chat_service.create_session(db_session, client_id).id

    with pytest.raises(StorageFailure) as excinfo:
        service.run(db_session, client_id, ChatRequest(chat_input="hello", session_id=session_id))

    assert excinfo.value.session_id == session_id
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert not service.locks.is_locked(session_id)
    assert chat_service.get_session_with_messages(db_session, session_id, client_id) is not None


def test_foreign_session_falls_back_to_new_one(db_session, client_id, make_engine):
    owned = chat_service.create_session(db_session, "another-client").id
    service = ChatTurnService(make_engine({"text": "hi"}))

    response = service.run(db_session, client_id, ChatRequest(chat_input="hello", session_id=owned))

    assert response.session_id != owned
    assert chat_service.get_session_with_messages(db_session, response.session_id, client_id) is not None
    assert chat_service.get_session_with_messages(db_session, owned, "another-client").messages == []
    assert not service.locks.is_locked(owned)
    assert not service.locks.is_locked(response.session_id)


def test_empty_input_is_rejected(db_session, client_id, make_engine):
    with pytest.raises(InvalidRequest):
        ChatTurnService(make_engine("x")).run(db_session, client_id, ChatRequest(chat_input="   "))


def test_unconfigured_engine_is_rejected(db_session, client_id, make_engine):
    with pytest.raises(UpstreamNotConfigured):
        ChatTurnService(make_engine("x", configured=False)).run(db_session, client_id, ChatRequest(message="hi"))


def test_upstream_failure_releases_lock_and_keeps_user_message(db_session, client_id, make_engine):
    service = ChatTurnService(make_engine(UpstreamFailure("Automation engine request failed: 503", status_code=503)))
    session_id = chat_service.create_session(db_session, client_id).id

    with pytest.raises(UpstreamFailure) as excinfo:
        service.run(db_session, client_id, ChatRequest(chat_input="hello", session_id=session_id))

    assert excinfo.value.session_id == session_id
    assert not service.locks.is_locked(session_id)
    stored = chat_service.get_session_with_messages(db_session, session_id, client_id)
    assert [message.text for message in stored.messages] == ["hello"]


def test_empty_reply_uses_fallback_text(db_session, client_id, make_engine):
    response = ChatTurnService(make_engine({})).run(db_session, client_id, ChatRequest(chat_input="hi"))
    assert response.reply == FALLBACK_REPLY
    assert response.tables == []


def test_second_request_for_same_session_is_busy(client_id, make_engine):
    entered = threading.Event()
    release = threading.Event()

    def slow_reply(payload):
        entered.set()
        release.wait(timeout=5)
        return {"text": "done"}

    service = ChatTurnService(make_engine(slow_reply), locks=SessionLockRegistry())
    with Session(engine) as setup:
        session_id = chat_service.create_session(setup, client_id).id

    outcome = {}

    def first_turn():
        with Session(engine) as session:
            outcome["first"] = service.run(session, client_id, ChatRequest(chat_input="one", session_id=session_id))

    worker = threading.Thread(target=first_turn)
    worker.start()
    assert entered.wait(timeout=5)

    with Session(engine) as session:
        with pytest.raises(UpstreamBusy) as excinfo:
            service.run(session, client_id, ChatRequest(chat_input="two", session_id=session_id))
    assert excinfo.value.session_id == session_id

    release.set()
    worker.join(timeout=5)
    assert outcome["first"].reply == "done"

    with Session(engine) as session:
        third = service.run(session, client_id, ChatRequest(chat_input="three", session_id=session_id))
    assert third.session_id == session_id
    assert [message.text for message in third.session.messages if message.role == "user"] == ["one", "three"]


def test_other_sessions_are_not_blocked():
    locks = SessionLockRegistry()
    with locks.turn() as lease:
        lease.lock("sess_a")
        assert locks.try_acquire("sess_b") is True
        assert locks.try_acquire("sess_a") is False
    locks.release("sess_b")
    assert not locks.is_locked("sess_a")
    assert not locks.is_locked("sess_b")
