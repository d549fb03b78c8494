"""Turn free-form automation engine replies into reply text and table drafts.

The engine does not commit to one reply shape, so extraction is driven by two
ordered rule tables: envelope rules decide which object carries the reply, and
field sources decide where text and tabular data live inside that object. The
first matching entry wins; supporting a new shape means adding an entry.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from app.core.errors import UpstreamFailure

FALLBACK_REPLY = 'This question is too complex for the assistant right now, please try asking another one.'

ENVELOPE_KEYS = frozenset(
    {'body', 'text', 'message', 'data', 'result', 'sql', 'chart_type', 'statusCode', 'response'}
)

_CSV_SPECIAL = ('"', ',', '\n', '\r')
_NUMERIC_NOISE = re.compile(r'[%％,，+\s]')
_NON_NUMERIC = re.compile(r'[^0-9.\-]')
_LEADING_NUMBER = re.compile(r'-?(?:\d+\.?\d*|\.\d+)', re.ASCII)


def cell_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def positional_headers(count: int) -> list[str]:
    return [f'col_{index + 1}' for index in range(count)]


def collect_headers(rows: list[Any]) -> list[str]:
    """Union of record keys in order of first appearance."""
    headers: list[str] = []
    seen: set[str] = set()
    width = 0
    for row in rows:
        if isinstance(row, dict):
            for key in row:
                if key and key not in seen:
                    seen.add(key)
                    headers.append(key)
        elif isinstance(row, list):
            width = max(width, len(row))
    if not headers and width:
        return positional_headers(width)
    return headers


def row_cells(row: Any, headers: list[str]) -> list[Any]:
    if isinstance(row, dict):
        return [row.get(key) for key in headers]
    if isinstance(row, list):
        return [row[index] if index < len(row) else None for index in range(len(headers))]
    return [None] * len(headers)


def csv_escape(value: Any) -> str:
    text = cell_text(value).replace('\r\n', '\n')
    if any(char in text for char in _CSV_SPECIAL):
        return '"' + text.replace('"', '""') + '"'
    return text


def rows_to_csv(rows: list[Any], headers: Optional[list[str]] = None) -> str:
    if not rows:
        return ''
    header_list = list(headers) if headers else collect_headers(rows)
    lines: list[str] = []
    if header_list:
        lines.append(','.join(csv_escape(header) for header in header_list))
        for row in rows:
            lines.append(','.join(csv_escape(cell) for cell in row_cells(row, header_list)))
    else:
        for row in rows:
            if isinstance(row, list):
                lines.append(','.join(csv_escape(cell) for cell in row))
            else:
                lines.append(csv_escape(row))
    return '\n'.join(lines)


def _markdown_cell(value: Any) -> str:
    return cell_text(value).replace('|', '\\|').replace('\r\n', '\n').replace('\n', ' ')


def rows_to_markdown(rows: list[Any], headers: list[str], max_rows: Optional[int] = None) -> str:
    if not rows or not headers:
        return ''
    lines = [
        '| ' + ' | '.join(_markdown_cell(header) for header in headers) + ' |',
        '| ' + ' | '.join('---' for _ in headers) + ' |',
    ]
    shown = rows[:max_rows] if max_rows else rows
    for row in shown:
        lines.append('| ' + ' | '.join(_markdown_cell(cell) for cell in row_cells(row, headers)) + ' |')
    markdown = '\n'.join(lines)
    if max_rows and len(rows) > max_rows:
        markdown += f'\n> {len(rows)} rows in total, showing the first {max_rows}'
    return markdown


def parse_numeric(value: Any) -> float:
    """Best-effort number for chart values; NaN when nothing numeric remains."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return math.nan
        return number if math.isfinite(number) else math.nan
    text = str(value).strip()
    if not text:
        return math.nan
    cleaned = _NON_NUMERIC.sub('', _NUMERIC_NOISE.sub('', text))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return math.nan
    number = float(match.group(0))
    return number if math.isfinite(number) else math.nan


@dataclass
class TableDraft:
    label: str
    headers: list[str]
    rows: list[Any]
    total_rows: int
    markdown: str
    csv: str
    chart_type: Optional[str] = None

    def to_raw_table(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'label': self.label,
            'headers': self.headers,
            'rows': self.rows,
            'totalRows': self.total_rows,
            'csv': self.csv,
        }
        if self.chart_type:
            payload['chartType'] = self.chart_type
        return payload


def build_table_draft(
    rows: list[Any],
    label: str,
    max_rows: Optional[int] = None,
    chart_type: Optional[str] = None,
) -> TableDraft:
    headers = collect_headers(rows)
    return TableDraft(
        label=label,
        headers=headers,
        rows=list(rows),
        total_rows=len(rows),
        markdown=rows_to_markdown(rows, headers, max_rows),
        csv=rows_to_csv(rows, headers),
        chart_type=chart_type,
    )


@dataclass
class ExtractedReply:
    text: str
    tables: list[TableDraft] = field(default_factory=list)

    @property
    def raw_tables(self) -> list[dict[str, Any]]:
        return [table.to_raw_table() for table in self.tables]


def _non_blank_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _nested(obj: dict, *path: str) -> Any:
    current: Any = obj
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


TEXT_SOURCES: tuple[str, ...] = ('body', 'text', 'message', 'data')

TABLE_SOURCES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ('result', ('result',)),
    ('body', ('body',)),
    ('data', ('data',)),
    ('result.data', ('result', 'data')),
)

JSON_FALLBACK_SOURCES: tuple[str, ...] = ('body', 'data')


def _status_code(obj: Any) -> Optional[int]:
    if not isinstance(obj, dict):
        return None
    code = obj.get('statusCode')
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    return None


def _check_status(code: int, details: Any) -> None:
    if not 200 <= code < 300:
        raise UpstreamFailure(f'Automation engine error: statusCode {code}', status_code=code, details=details)


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    matches: Callable[[Any], bool]
    extract: Callable[[Any], str]


def _is_record_array(reply: Any) -> bool:
    return (
        isinstance(reply, list)
        and bool(reply)
        and isinstance(reply[0], dict)
        and not ENVELOPE_KEYS.intersection(reply[0])
    )


def _is_item_array(reply: Any) -> bool:
    return isinstance(reply, list) and bool(reply) and isinstance(reply[0], dict)


def _is_empty(reply: Any) -> bool:
    return reply is None or (isinstance(reply, (list, dict)) and not reply)


def _is_scalar_array(reply: Any) -> bool:
    return isinstance(reply, list) and bool(reply)


class ReplyExtractor:
    """Collects reply text and table drafts from one engine reply.

    ``max_rows`` bounds the markdown rendering only; drafts keep every row so
    the sanitizer can record the real total.
    """

    def __init__(self, max_rows: Optional[int] = None) -> None:
        self.max_rows = max_rows if max_rows and max_rows > 0 else None
        self.tables: list[TableDraft] = []
        self.rules: list[ExtractionRule] = [
            ExtractionRule('record-array', _is_record_array, self._from_record_array),
            ExtractionRule('item-array', _is_item_array, lambda reply: self._from_object(reply[0])),
            ExtractionRule('scalar-array', _is_scalar_array, lambda reply: cell_text(reply[0])),
            ExtractionRule('object', lambda reply: isinstance(reply, dict), self._from_object),
        ]

    def extract(self, reply: Any) -> ExtractedReply:
        self.tables = []
        text = ''
        if not _is_empty(reply):
            for rule in self.rules:
                if rule.matches(reply):
                    text = rule.extract(reply)
                    break
            else:
                text = cell_text(reply).strip()
        if not text or not text.strip():
            text = FALLBACK_REPLY
        return ExtractedReply(text=text, tables=list(self.tables))

    def _from_record_array(self, reply: list) -> str:
        return self._append_table('', reply, 'result', None)

    def _from_object(self, obj: dict) -> str:
        response = obj.get('response')
        code = _status_code(response)
        if code is not None:
            _check_status(code, response)
            body = response.get('body')
            if isinstance(body, str):
                return body
            if isinstance(body, dict):
                return self._from_fields(body) or json.dumps(body, ensure_ascii=False)
            return json.dumps(body, ensure_ascii=False)
        code = _status_code(obj)
        if code is not None:
            _check_status(code, obj)
        return self._from_fields(obj) or json.dumps(obj, ensure_ascii=False)

    def _from_fields(self, obj: dict) -> str:
        text = ''
        for key in TEXT_SOURCES:
            if isinstance(obj.get(key), str):
                text = obj[key]
                break

        sql = _non_blank_str(obj.get('sql'))
        if sql:
            text = f"{text}\n\n" if text else ''
            text += f'SQL:\n```sql\n{sql}\n```'

        # The hint belongs to the first table only and is dropped when none follows.
        chart_hint = _non_blank_str(obj.get('chart_type'))
        for label, path in TABLE_SOURCES:
            rows = _nested(obj, *path)
            if isinstance(rows, list):
                text = self._append_table(text, rows, label, chart_hint)
                chart_hint = None
                break
        if chart_hint:
            logger.debug('chart hint "{}" dropped, reply carried no table', chart_hint)

        if not text:
            for key in JSON_FALLBACK_SOURCES:
                if isinstance(obj.get(key), dict):
                    text = json.dumps(obj[key], ensure_ascii=False)
                    break
        return text

    def _append_table(self, text: str, rows: list, label: str, chart_hint: Optional[str]) -> str:
        draft = build_table_draft(rows, label, self.max_rows, chart_hint)
        self.tables.append(draft)
        logger.info(
            json.dumps(
                {'event': 'chat.table.collected', 'label': label, 'total_rows': draft.total_rows},
                ensure_ascii=False,
            )
        )
        if not draft.markdown:
            return text
        return f'{text}\n\n{draft.markdown}' if text else draft.markdown


def extract_reply(reply: Any, max_rows: Optional[int] = None) -> ExtractedReply:
    return ReplyExtractor(max_rows=max_rows).extract(reply)
