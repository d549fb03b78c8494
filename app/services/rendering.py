"""Pure data transforms behind chart rendering and CSV export.

Nothing here touches a renderer: callers receive plain data structures and hand
them to whatever charting or download mechanism the host provides.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from app.schemas.chat import Table, TableSummary
from app.services.table_extractor import collect_headers, parse_numeric, rows_to_csv

COLOR_PALETTE: tuple[str, ...] = (
    '#6366f1', '#f97316', '#10b981', '#ec4899', '#0ea5e9',
    '#facc15', '#a855f7', '#14b8a6', '#ef4444', '#8b5cf6',
)

CHART_TYPE_MAP: dict[str, str] = {
    'column': 'bar',
    'bar': 'bar',
    'histogram': 'bar',
    'pie': 'pie',
    'donut': 'doughnut',
    'doughnut': 'doughnut',
    'line': 'line',
    'area': 'line',
}
RENDERABLE_CHARTS = frozenset({'bar', 'pie', 'doughnut', 'line'})
PIE_LIKE = frozenset({'pie', 'doughnut'})

CSV_BOM = '\ufeff'
_UNSAFE_FILENAME = re.compile(r'[^\w.-]+', re.ASCII)


def normalize_chart_intent(intent: Any) -> Optional[str]:
    """Map a free-form intent to a renderable family, ``None`` for no chart."""
    if not isinstance(intent, str):
        return None
    normalized = intent.strip().lower()
    if not normalized or normalized == 'table':
        return None
    mapped = CHART_TYPE_MAP.get(normalized, normalized)
    return mapped if mapped in RENDERABLE_CHARTS else None


@dataclass
class ChartDataset:
    key: str
    label: str
    data: list[float]
    color_index: int


@dataclass
class ChartData:
    labels: list[str]
    dimension_key: str
    datasets: list[ChartDataset] = field(default_factory=list)


def _table_value(table: Any, attribute: str, alias: str) -> Any:
    if isinstance(table, Table):
        return getattr(table, attribute)
    if isinstance(table, dict):
        return table.get(alias, table.get(attribute))
    return None


def _row_records(rows: list[Any], headers: list[str]) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for row in rows:
        if isinstance(row, dict) and row:
            records.append(row)
        elif isinstance(row, list) and row:
            records.append(dict(zip(headers, row)))
    return records


def numeric_columns(records: list[dict[str, Any]], headers: list[str]) -> list[str]:
    return [
        key for key in headers
        if any(math.isfinite(parse_numeric(record.get(key))) for record in records)
    ]


def build_datasets(headers: Any, rows: Any, chart_type: Optional[str]) -> Optional[ChartData]:
    if not isinstance(rows, list) or not rows:
        return None
    header_list = [header for header in headers or [] if header] or collect_headers(rows)
    if not header_list:
        return None
    records = _row_records(rows, header_list)
    if not records:
        return None

    numeric_keys = numeric_columns(records, header_list)
    if not numeric_keys:
        return None
    dimension_key = next((key for key in header_list if key not in numeric_keys), None)
    if dimension_key is None:
        dimension_key = next((key for key in header_list if key != numeric_keys[0]), header_list[0])

    metric_keys = numeric_keys[:1] if chart_type in PIE_LIKE else numeric_keys

    labels = []
    for index, record in enumerate(records):
        raw = record.get(dimension_key)
        text = '' if raw is None else str(raw)
        labels.append(text if text.strip() else f'Item {index + 1}')

    datasets: list[ChartDataset] = []
    for key in metric_keys:
        values = [parse_numeric(record.get(key)) for record in records]
        data = [value if math.isfinite(value) else 0.0 for value in values]
        if not any(value != 0 for value in data):
            continue
        datasets.append(ChartDataset(key=key, label=key, data=data, color_index=len(datasets)))
    if not datasets:
        return None
    return ChartData(labels=labels, dimension_key=dimension_key, datasets=datasets)


def build_table_chart(table: Any) -> Optional[tuple[str, ChartData]]:
    chart_type = normalize_chart_intent(_table_value(table, 'chart_type', 'chartType'))
    if chart_type is None:
        return None
    chart_data = build_datasets(_table_value(table, 'headers', 'headers'), _table_value(table, 'rows', 'rows'), chart_type)
    if chart_data is None:
        return None
    return chart_type, chart_data


def palette_color(index: int) -> str:
    return COLOR_PALETTE[index % len(COLOR_PALETTE)]


def hex_to_rgba(value: str, alpha: float) -> str:
    digits = value.lstrip('#')
    if len(digits) != 6:
        return value
    red, green, blue = (int(digits[offset:offset + 2], 16) for offset in (0, 2, 4))
    return f'rgba({red}, {green}, {blue}, {alpha})'


def build_chart_config(chart_type: str, chart_data: ChartData, title: str) -> dict[str, Any]:
    pie_like = chart_type in PIE_LIKE
    datasets = []
    for dataset in chart_data.datasets:
        if pie_like:
            datasets.append(
                {
                    'label': dataset.label or title,
                    'data': dataset.data,
                    'backgroundColor': [palette_color(position) for position in range(len(dataset.data))],
                    'borderColor': '#ffffff',
                    'borderWidth': 1,
                }
            )
            continue
        base = palette_color(dataset.color_index)
        is_line = chart_type == 'line'
        datasets.append(
            {
                'label': dataset.label or title,
                'data': dataset.data,
                'backgroundColor': hex_to_rgba(base, 0.25) if is_line else base,
                'borderColor': base,
                'borderWidth': 2 if is_line else 1,
                'fill': False if is_line else 'origin',
                'tension': 0.35 if is_line else 0,
            }
        )

    options: dict[str, Any] = {
        'responsive': True,
        'maintainAspectRatio': False,
        'plugins': {'legend': {'display': True, 'position': 'bottom'}},
    }
    if not pie_like:
        options['scales'] = {
            'x': {'title': {'display': True, 'text': chart_data.dimension_key}},
            'y': {'beginAtZero': True},
        }
    return {
        'type': chart_type,
        'data': {'labels': chart_data.labels, 'datasets': datasets},
        'options': options,
    }


def build_csv(table: Any) -> str:
    """CSV export text with a leading byte-order mark."""
    prebuilt = _table_value(table, 'csv', 'csv')
    if isinstance(prebuilt, str) and prebuilt:
        return prebuilt if prebuilt.startswith(CSV_BOM) else CSV_BOM + prebuilt
    rows = _table_value(table, 'rows', 'rows')
    if not isinstance(rows, list):
        rows = []
    headers = [header for header in _table_value(table, 'headers', 'headers') or [] if header]
    return CSV_BOM + rows_to_csv(rows, headers or None)


def export_filename(label: Any, index: int = 0, now: Optional[datetime] = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    timestamp = moment.strftime('%Y-%m-%dT%H-%M-%S-') + f'{moment.microsecond // 1000:03d}Z'
    fallback = f'table-{index + 1}'
    raw = label.strip() if isinstance(label, str) and label.strip() else fallback
    safe = _UNSAFE_FILENAME.sub('_', raw).strip('_') or fallback
    return f'{safe}-{timestamp}.csv'


def resolve_total_rows(table: Any, summary: Optional[TableSummary] = None) -> int:
    if summary is not None:
        return summary.total_rows
    total = _table_value(table, 'total_rows', 'totalRows')
    if isinstance(total, int) and not isinstance(total, bool):
        return total
    rows = _table_value(table, 'rows', 'rows')
    return len(rows) if isinstance(rows, list) else 0
