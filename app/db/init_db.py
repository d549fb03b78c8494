from loguru import logger
from sqlalchemy import inspect, text
from sqlmodel import SQLModel
from app.db.session import engine
from app.models import chat_message, chat_session  # noqa: F401
from app.models.chat_session import LEGACY_OWNER

_SESSION_COLUMN_DDL = {
    'owner': f"VARCHAR(128) NOT NULL DEFAULT '{LEGACY_OWNER}'",
    'title_locked': 'BOOLEAN NOT NULL DEFAULT 0',
}


def _upgrade_sessions_table() -> None:
    inspector = inspect(engine)
    if 'sessions' not in inspector.get_table_names():
        return
    existing = {column['name'] for column in inspector.get_columns('sessions')}
    missing = [name for name in _SESSION_COLUMN_DDL if name not in existing]
    if not missing:
        return
    with engine.begin() as connection:
        for name in missing:
            logger.info('Adding sessions.{} column', name)
            connection.execute(text(f'ALTER TABLE sessions ADD COLUMN {name} {_SESSION_COLUMN_DDL[name]}'))


def init_db(drop_all: bool = False) -> None:
    if drop_all:
        SQLModel.metadata.drop_all(engine)
    _upgrade_sessions_table()
    SQLModel.metadata.create_all(engine)
