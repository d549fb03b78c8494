from app.schemas.chat import Table
from app.services.table_extractor import extract_reply
from app.services.table_sanitizer import (
    CELL_ELLIPSIS,
    MAX_CELL_LENGTH,
    MAX_LABEL_LENGTH,
    MAX_TABLE_HEADERS,
    MAX_TABLE_ROWS,
    build_table_summary,
    is_placeholder_row,
    sanitize_table,
    sanitize_tables,
)


def _payloads(tables):
    return [table.to_payload() for table in tables]


def test_placeholder_rows_are_dropped():
    raw = {
        "headers": ["region", "sales"],
        "rows": [
            {"region": "A", "sales": 10},
            {"region": "-", "sales": "—"},
            {"region": " ", "sales": ""},
            {"region": "–", "sales": None},
        ],
        "totalRows": 4,
    }
    table = sanitize_table(raw, 0)
    assert table is not None
    assert table.rows == [{"region": "A", "sales": "10"}]
    assert table.total_rows == 1
    assert table.rows_truncated is False


def test_table_of_only_placeholders_is_absent():
    raw = {"label": "empty", "headers": ["a"], "rows": [["-"], ["  "], ["——"]]}
    assert sanitize_tables([raw]) == []


def test_table_without_headers_or_rows_is_dropped():
    assert sanitize_table({"label": "nothing"}, 0) is None


def test_headers_only_table_is_kept():
    table = sanitize_table({"headers": ["a", "b"]}, 2)
    assert table is not None
    assert table.label == "table-3"
    assert table.rows == []


def test_row_cap_and_truncation_flag():
    rows = [{"n": index} for index in range(10)]
    table = sanitize_table({"rows": rows, "totalRows": 10}, 0, row_limit=4)
    assert len(table.rows) == 4
    assert table.total_rows == 10
    assert table.rows_truncated is True
    assert table.limit == 4
    assert table.max_rows == 4


def test_row_limit_never_exceeds_global_maximum():
    rows = [[index] for index in range(MAX_TABLE_ROWS + 5)]
    table = sanitize_table({"rows": rows}, 0, row_limit=MAX_TABLE_ROWS * 2)
    assert len(table.rows) == MAX_TABLE_ROWS
    assert table.total_rows == MAX_TABLE_ROWS + 5
    assert table.rows_truncated is True


def test_zero_limit_means_global_maximum():
    table = sanitize_table({"rows": [[1], [2]]}, 0, row_limit=0)
    assert len(table.rows) == 2
    assert table.limit == MAX_TABLE_ROWS


def test_caps_headers_labels_and_cells():
    headers = [f"h{index}" for index in range(MAX_TABLE_HEADERS + 3)]
    long_label = "x" * (MAX_LABEL_LENGTH + 10)
    raw = {
        "label": "  " + long_label + "  ",
        "headers": headers,
        "rows": [{"h0": "y" * (MAX_CELL_LENGTH + 1)}],
    }
    table = sanitize_table(raw, 0)
    assert len(table.headers) == MAX_TABLE_HEADERS
    assert table.label == long_label[:MAX_LABEL_LENGTH]
    assert table.rows[0]["h0"] == "y" * MAX_CELL_LENGTH + CELL_ELLIPSIS


def test_chart_type_is_lowercased_and_blank_means_none():
    assert sanitize_table({"rows": [[1]], "chartType": "  Pie "}, 0).chart_type == "pie"
    assert sanitize_table({"rows": [[1]], "chartType": "   "}, 0).chart_type is None


def test_sanitize_is_idempotent():
    raws = [
        {
            "label": "sales",
            "headers": ["region", " sales "],
            "rows": [{"region": "A", " sales ": 1}, {"region": "-", " sales ": "-"}, {"region": "B", " sales ": 2.0}],
            "totalRows": 9,
            "csv": "region, sales \nA,1\n-,-\nB,2",
            "chartType": "BAR",
        },
        {"rows": [[1, "x"], ["", ""], [2, None]]},
        {"rows": [{"k": index} for index in range(12)]},
    ]
    once = sanitize_tables(raws, row_limit=5)
    twice = sanitize_tables(_payloads(once), row_limit=5)
    assert _payloads(twice) == _payloads(once)
    assert sanitize_tables(once, row_limit=5) == once


def test_caps_landing_on_whitespace_are_stable():
    header = "a" * (MAX_LABEL_LENGTH - 1) + " b"
    raw = {
        "label": "L" * (MAX_LABEL_LENGTH - 1) + " z",
        "headers": [header],
        "rows": [{header: "y" * (MAX_CELL_LENGTH + 500)}],
    }
    first = sanitize_table(raw, 0)
    assert first.headers == ["a" * (MAX_LABEL_LENGTH - 1)]
    assert first.label == "L" * (MAX_LABEL_LENGTH - 1)
    assert first.rows[0][first.headers[0]] == "y" * MAX_CELL_LENGTH + CELL_ELLIPSIS

    second = sanitize_table(first.to_payload(), 0)
    assert second.to_payload() == first.to_payload()
    assert sanitize_table(second, 0) == second


def test_row_cap_property_holds_after_sanitizing():
    for table in sanitize_tables([{"rows": [[index] for index in range(7)], "totalRows": 7}], row_limit=3):
        assert len(table.rows) <= min(table.limit, table.total_rows)
        assert table.rows_truncated == (table.total_rows > len(table.rows))


def test_csv_is_rebuilt_when_placeholders_were_removed():
    raw = {
        "headers": ["a"],
        "rows": [{"a": "1"}, {"a": "-"}],
        "csv": "a\n1\n-",
    }
    table = sanitize_table(raw, 0)
    assert table.csv == "a\n1"


def test_extractor_drafts_sanitize_cleanly():
    extracted = extract_reply({"data": [{"name": "a", "value": 1}, {"name": "", "value": ""}]})
    tables = sanitize_tables(extracted.tables)
    assert len(tables) == 1
    assert tables[0].label == "data"
    assert tables[0].total_rows == 1
    assert build_table_summary(tables)[0].total_rows == 1


def test_is_placeholder_row_on_mixed_values():
    assert is_placeholder_row(["-", " - ", ""]) is True
    assert is_placeholder_row(["-", "0"]) is False


def test_accepts_table_models():
    model = Table(label="t", headers=["a"], rows=[{"a": "1"}], total_rows=1)
    table = sanitize_table(model, 0)
    assert table.rows == [{"a": "1"}]
