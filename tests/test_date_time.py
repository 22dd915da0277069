from datetime import datetime, timezone

import pytest

from typeflow.workflows.engine.definitions import make_item
from typeflow.workflows.engine.nodes.configs import DateTimeConfig
from typeflow.workflows.engine.nodes.data.date_time import (
    add_to_date,
    difference,
    extract_from_date,
    format_date,
    parse_date,
    to_iso,
    transform_dates,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_parse_date_formats():
    assert parse_date("2024-05-06T07:08:09Z") == utc(2024, 5, 6, 7, 8, 9)
    assert parse_date("2024-05-06") == utc(2024, 5, 6)
    assert parse_date(0) == utc(1970, 1, 1)
    assert parse_date("2024-05-06T09:08:09+02:00") == utc(2024, 5, 6, 7, 8, 9)


def test_parse_invalid_date():
    with pytest.raises(ValueError, match="Invalid date"):
        parse_date("not a date")


def test_to_iso_has_milliseconds_and_z():
    assert to_iso(utc(2024, 1, 2, 3, 4, 5, 678000)) == "2024-01-02T03:04:05.678Z"


def test_format_tokens():
    assert format_date(utc(2024, 5, 6, 7, 8, 9), "DD/MM/YYYY HH:mm:ss") == "06/05/2024 07:08:09"


def test_add_months_rolls_over_short_months():
    assert add_to_date(utc(2024, 1, 31), 1, "months") == utc(2024, 3, 2)
    assert add_to_date(utc(2024, 2, 29), 1, "years") == utc(2025, 3, 1)
    assert add_to_date(utc(2024, 1, 1), -2, "hours") == utc(2023, 12, 31, 22)


def test_difference_truncates_toward_zero():
    assert difference(utc(2024, 1, 1), utc(2024, 1, 31), "days") == 30
    assert difference(utc(2024, 1, 31), utc(2024, 2, 29), "months") == 0
    assert difference(utc(2024, 1, 31), utc(2024, 1, 1), "weeks") == -4
    assert difference(utc(2020, 6, 1), utc(2024, 5, 31), "years") == 3


def test_extract_parts():
    sunday = utc(2024, 1, 7, 13)
    assert extract_from_date(sunday, "dayOfWeek") == 0
    assert extract_from_date(sunday, "hour") == 13
    assert extract_from_date(sunday, "month") == 1


def test_transform_dates_writes_output_field():
    config = DateTimeConfig.model_validate(
        {"operation": "add", "inputField": "d", "amount": 2, "unit": "days", "outputField": "due"}
    )
    result = transform_dates(config, [make_item({"d": "2024-02-28T00:00:00Z"})])
    assert result[0].json_data == {"d": "2024-02-28T00:00:00Z", "due": "2024-03-01T00:00:00.000Z"}


def test_transform_difference_against_compare_field():
    config = DateTimeConfig.model_validate(
        {"operation": "difference", "inputField": "start", "compareField": "end", "unit": "hours"}
    )
    item = make_item({"start": "2024-01-01T00:00:00Z", "end": "2024-01-02T06:00:00Z"})
    assert transform_dates(config, [item])[0].json_data["date"] == 30


def test_transform_now_defaults_to_date_field():
    result = transform_dates(DateTimeConfig(), [make_item({})])
    assert parse_date(result[0].json_data["date"]).tzinfo is not None
