import csv
import io
import math

import pytest

from app.core.errors import UpstreamFailure
from app.services.table_extractor import (
    FALLBACK_REPLY,
    collect_headers,
    extract_reply,
    parse_numeric,
    rows_to_csv,
    rows_to_markdown,
)


def test_headers_follow_first_appearance_order():
    rows = [{"zeta": 1, "alpha": 2}, {"alpha": 3, "mid": 4}]
    assert collect_headers(rows) == ["zeta", "alpha", "mid"]


def test_array_rows_get_positional_headers():
    assert collect_headers([[1, 2], [3, 4, 5]]) == ["col_1", "col_2", "col_3"]


def test_markdown_escapes_pipes_and_newlines_and_notes_truncation():
    rows = [{"name": "a|b", "note": "line1\nline2"}, {"name": "c", "note": "d"}]
    markdown = rows_to_markdown(rows, ["name", "note"], max_rows=1)
    lines = markdown.split("\n")
    assert lines[0] == "| name | note |"
    assert lines[1] == "| --- | --- |"
    assert lines[2] == "| a\\|b | line1 line2 |"
    assert lines[-1] == "> 2 rows in total, showing the first 1"


def test_csv_round_trips_through_a_standard_reader():
    rows = [{"city": "Paris, FR", "quote": 'say "hi"', "note": "two\nlines"}]
    text = rows_to_csv(rows)
    parsed = list(csv.reader(io.StringIO(text, newline="")))
    assert parsed == [["city", "quote", "note"], ["Paris, FR", 'say "hi"', "two\nlines"]]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1,234", 1234.0), ("56%", 56.0), (" 12 ", 12.0), ("-3.5", -3.5), (7, 7.0)],
)
def test_parse_numeric(raw, expected):
    assert parse_numeric(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "", None, float("inf")])
def test_parse_numeric_not_a_number(raw):
    assert math.isnan(parse_numeric(raw))


def test_top_level_record_array_is_the_dataset():
    extracted = extract_reply([{"region": "A", "sales": 10}, {"region": "B", "sales": 4}])
    assert len(extracted.tables) == 1
    table = extracted.tables[0]
    assert table.label == "result"
    assert table.headers == ["region", "sales"]
    assert table.total_rows == 2
    assert extracted.text.startswith("| region | sales |")


def test_wrapped_response_body_text():
    reply = [{"response": {"statusCode": 200, "body": "hello there"}}]
    extracted = extract_reply(reply)
    assert extracted.text == "hello there"
    assert extracted.tables == []


def test_wrapped_response_with_error_status_raises():
    reply = [{"response": {"statusCode": 500, "body": "boom"}}]
    with pytest.raises(UpstreamFailure) as excinfo:
        extract_reply(reply)
    assert excinfo.value.status_code == 500


def test_object_status_code_is_checked():
    with pytest.raises(UpstreamFailure):
        extract_reply({"statusCode": 404, "message": "missing"})


def test_text_sql_and_chart_hint_are_combined():
    reply = {
        "text": "Revenue by region",
        "sql": "select region, sum(x) from t group by 1",
        "chart_type": "Column",
        "result": [{"region": "A", "revenue": 1}],
    }
    extracted = extract_reply(reply)
    assert extracted.text.startswith("Revenue by region\n\nSQL:\n```sql\nselect region")
    assert "| region | revenue |" in extracted.text
    assert extracted.tables[0].chart_type == "Column"
    assert extracted.raw_tables[0]["chartType"] == "Column"


def test_nested_result_data_is_used_when_no_direct_array():
    extracted = extract_reply({"message": "done", "result": {"data": [{"a": 1}]}})
    assert extracted.text.startswith("done")
    assert extracted.tables[0].label == "result.data"


def test_direct_array_wins_over_nested_result_data():
    extracted = extract_reply({"body": [{"a": 1}], "result": {"data": [{"b": 2}]}})
    assert [table.label for table in extracted.tables] == ["body"]


def test_chart_hint_without_table_is_dropped():
    extracted = extract_reply({"text": "nothing tabular", "chart_type": "pie"})
    assert extracted.text == "nothing tabular"
    assert extracted.tables == []


def test_markdown_respects_row_limit_but_draft_keeps_all_rows():
    rows = [{"n": index} for index in range(5)]
    extracted = extract_reply({"data": rows}, max_rows=2)
    assert extracted.tables[0].total_rows == 5
    assert len(extracted.tables[0].rows) == 5
    assert "> 5 rows in total, showing the first 2" in extracted.text


@pytest.mark.parametrize("reply", [None, "", [], {}, "   "])
def test_unrecognized_or_empty_replies_fall_back(reply):
    assert extract_reply(reply).text == FALLBACK_REPLY


def test_object_without_known_fields_is_serialized():
    extracted = extract_reply({"unexpected": 1})
    assert extracted.text == '{"unexpected": 1}'


def test_plain_string_reply_is_used_verbatim():
    assert extract_reply("  plain answer ").text == "plain answer"
