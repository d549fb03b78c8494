from typing import Any, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from app.models.enums import ChatRole


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TableSummary(CamelModel):
    total_rows: int = 0


class Table(CamelModel):
    label: str
    headers: list[str] = []
    rows: list[Any] = []
    rows_truncated: bool = False
    total_rows: int = 0
    csv: Optional[str] = None
    chart_type: Optional[str] = None
    limit: Optional[int] = None
    max_rows: Optional[int] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class MessageOut(CamelModel):
    id: str
    session_id: Optional[str] = None
    role: ChatRole
    text: str = ''
    time: int
    table_summary: list[TableSummary] = []
    table_data: list[Table] = []


class SessionOut(CamelModel):
    id: str
    title: str
    created_at: Optional[int] = None
    updated_at: int
    messages: list[MessageOut] = []


class SessionEnvelope(BaseModel):
    session: SessionOut


class SessionListOut(BaseModel):
    sessions: list[SessionOut]


class SessionCreate(CamelModel):
    title: Optional[str] = None
    client_id: Optional[str] = None


class ChatRequest(CamelModel):
    chat_input: Optional[str] = None
    message: Optional[str] = None
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    message_time: Optional[float] = None
    client_id: Optional[str] = None

    def resolved_input(self) -> str:
        for value in (self.chat_input, self.message):
            if isinstance(value, str) and value.strip():
                return value
        return ''


class ChatResponse(CamelModel):
    reply: str
    tables: list[Table] = []
    session_id: str
    user_message_id: str
    bot_message_id: str
    session: Optional[SessionOut] = None


class ConfigOut(BaseModel):
    automation_host: str
    configured: bool
    table_default_rows: int
    table_max_rows: int
