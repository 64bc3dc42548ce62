"""Test date helpers."""

from datetime import datetime, timezone

import pytest

from typeflow.nodes.base import DateUnit
from typeflow.nodes.dates import (
    add_to_date,
    extract_from_date,
    format_date,
    parse_date,
    to_iso_string,
)


@pytest.mark.unit
class TestParseDate:
    """Test date parsing."""

    def test_iso_string_with_z(self):
        assert parse_date("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_naive_values_are_utc(self):
        assert parse_date("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert parse_date(1705276800000) == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="Invalid date value"):
            parse_date("not a date")


@pytest.mark.unit
class TestDateArithmetic:
    """Test add/format/extract."""

    def test_add_days(self):
        moment = add_to_date(parse_date("2024-01-15"), 10, DateUnit.DAYS)
        assert to_iso_string(moment) == "2024-01-25T00:00:00.000Z"

    def test_month_addition_clamps_to_month_end(self):
        moment = add_to_date(parse_date("2024-01-31"), 1, DateUnit.MONTHS)
        assert moment.date().isoformat() == "2024-02-29"

    def test_year_subtraction(self):
        moment = add_to_date(parse_date("2024-02-29"), -1, DateUnit.YEARS)
        assert moment.date().isoformat() == "2023-02-28"

    def test_format_tokens(self):
        moment = datetime(2024, 3, 5, 7, 8, 9, tzinfo=timezone.utc)
        assert format_date(moment, "YYYY/MM/DD HH:mm:ss") == "2024/03/05 07:08:09"
        assert format_date(moment) == "2024-03-05T07:08:09.000Z"

    def test_extract_parts(self):
        moment = datetime(2024, 1, 14, 12, 0, tzinfo=timezone.utc)  # a Sunday
        assert extract_from_date(moment, "year") == 2024
        assert extract_from_date(moment, "month") == 1
        assert extract_from_date(moment, "dayOfWeek") == 0
        assert extract_from_date(moment, "fortnight") == 0
