"""Make extracted or client supplied tables safe to store and render again.

Sanitizing is idempotent: feeding the output back in returns the same tables,
so the read path can run stored payloads through it unconditionally.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from app.schemas.chat import Table, TableSummary
from app.services.table_extractor import TableDraft, cell_text, collect_headers, rows_to_csv

PLACEHOLDER_CELL_PATTERN = re.compile('^[\\-\u2013\u2014]+$')
_WHITESPACE = re.compile(r'\s+')

MAX_TABLE_HEADERS = 40
MAX_TABLE_ROWS = 5000
MAX_LABEL_LENGTH = 120
MAX_CELL_LENGTH = 2000
CELL_ELLIPSIS = '...'


def is_placeholder_value(value: Any) -> bool:
    normalized = _WHITESPACE.sub('', cell_text(value))
    if not normalized:
        return True
    return bool(PLACEHOLDER_CELL_PATTERN.match(normalized))


def is_placeholder_row(row: Any) -> bool:
    if isinstance(row, list):
        return all(is_placeholder_value(cell) for cell in row)
    if isinstance(row, dict):
        return all(is_placeholder_value(cell) for cell in row.values())
    return is_placeholder_value(row)


def sanitize_cell(value: Any) -> str:
    text = cell_text(value)
    if len(text) > MAX_CELL_LENGTH:
        return text[:MAX_CELL_LENGTH] + CELL_ELLIPSIS
    return text


def sanitize_headers(raw_headers: Any) -> list[tuple[str, str]]:
    """Return ``(source_key, label)`` pairs so rows can be re-keyed by label."""
    if not isinstance(raw_headers, list):
        return []
    pairs: list[tuple[str, str]] = []
    for header in raw_headers[:MAX_TABLE_HEADERS]:
        if header is None:
            continue
        source = cell_text(header)
        label = source.strip()[:MAX_LABEL_LENGTH].strip()
        if label:
            pairs.append((source, label))
    return pairs


def sanitize_row(row: Any, header_pairs: list[tuple[str, str]]) -> Any:
    if isinstance(row, list):
        return [sanitize_cell(cell) for cell in row[:MAX_TABLE_HEADERS]]
    if isinstance(row, dict):
        if header_pairs:
            return {label: sanitize_cell(row.get(source)) for source, label in header_pairs}
        keys = [key for key in row if key][:MAX_TABLE_HEADERS]
        return {key[:MAX_LABEL_LENGTH]: sanitize_cell(row[key]) for key in keys}
    return sanitize_cell(row)


def sanitize_label(raw_label: Any, index: int) -> str:
    if isinstance(raw_label, str) and raw_label.strip():
        return raw_label.strip()[:MAX_LABEL_LENGTH].strip()
    return f'table-{index + 1}'


def sanitize_chart_type(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().lower()
    return normalized or None


def _count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value >= 0:
        return value
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    return None


def active_row_limit(limit: Optional[int]) -> int:
    if limit and limit > 0:
        return min(limit, MAX_TABLE_ROWS)
    return MAX_TABLE_ROWS


def _as_mapping(table: Any) -> Optional[dict[str, Any]]:
    if isinstance(table, Table):
        return table.to_payload()
    if isinstance(table, TableDraft):
        return table.to_raw_table()
    if isinstance(table, dict):
        return table
    return None


def _pick(table: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in table:
            return table[key]
    return None


def sanitize_table(raw: Any, index: int, row_limit: Optional[int] = None) -> Optional[Table]:
    """Sanitize one table, returning ``None`` when nothing storable remains."""
    table = _as_mapping(raw)
    if table is None:
        return None

    raw_rows = table.get('rows') if isinstance(table.get('rows'), list) else None

    raw_headers = table.get('headers')
    if not isinstance(raw_headers, list) or not raw_headers:
        raw_headers = collect_headers(raw_rows or [])
    header_pairs = sanitize_headers(raw_headers)
    headers = [label for _, label in header_pairs]

    # Placeholders are judged on the stored projection of each row.
    cleaned: list[Any] = []
    kept_raw: list[Any] = []
    for row in raw_rows or []:
        sanitized_row = sanitize_row(row, header_pairs)
        if not is_placeholder_row(sanitized_row):
            cleaned.append(sanitized_row)
            kept_raw.append(row)
    if raw_rows is not None and not cleaned:
        return None
    removed = len(raw_rows) - len(cleaned) if raw_rows is not None else 0

    limit = active_row_limit(row_limit or _count(_pick(table, 'limit', 'maxRows', 'max_rows')))
    rows = cleaned[:limit]
    if not headers and not rows:
        return None

    declared_total = _count(_pick(table, 'totalRows', 'total_rows'))
    if declared_total is None:
        total_rows = len(cleaned)
    else:
        total_rows = max(declared_total - removed, len(cleaned))

    csv = table.get('csv') if isinstance(table.get('csv'), str) else None
    if csv and removed:
        csv = rows_to_csv(kept_raw, [source for source, _ in header_pairs] or None)

    return Table(
        label=sanitize_label(table.get('label'), index),
        headers=headers,
        rows=rows,
        rows_truncated=total_rows > len(rows),
        total_rows=total_rows,
        csv=csv or None,
        chart_type=sanitize_chart_type(_pick(table, 'chartType', 'chart_type')),
        limit=limit,
        max_rows=limit,
    )


def sanitize_tables(raw_tables: Any, row_limit: Optional[int] = None) -> list[Table]:
    if not isinstance(raw_tables, list):
        return []
    tables: list[Table] = []
    for index, raw in enumerate(raw_tables):
        table = sanitize_table(raw, index, row_limit)
        if table is not None:
            tables.append(table)
    return tables


def sanitize_table_summary(summary: Any) -> list[TableSummary]:
    if not isinstance(summary, list):
        return []
    sanitized: list[TableSummary] = []
    for item in summary:
        if isinstance(item, TableSummary):
            sanitized.append(item)
            continue
        if not isinstance(item, dict):
            continue
        total = _count(_pick(item, 'totalRows', 'total_rows'))
        if total is not None:
            sanitized.append(TableSummary(total_rows=total))
    return sanitized


def build_table_summary(tables: list[Table]) -> list[TableSummary]:
    return [TableSummary(total_rows=table.total_rows) for table in tables]
