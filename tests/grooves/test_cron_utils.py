"""
Tests for grooves/cron_utils.py.

Covers: normalize, is_valid, most_recent_firing, describe.
"""

from datetime import datetime, timezone

import pytest

from grooves.cron_utils import describe, is_valid, most_recent_firing, normalize


# ---------------------------------------------------------------------------
# TestNormalize
# ---------------------------------------------------------------------------

class TestNormalize:
    def test_five_fields_get_seconds_prefix(self):
        assert normalize("0 8 * * *") == "0 0 8 * * *"

    def test_six_fields_unchanged(self):
        assert normalize("30 0 8 * * *") == "30 0 8 * * *"

    def test_surrounding_whitespace_trimmed(self):
        assert normalize("  */5 * * * *  ") == "0 */5 * * * *"

    def test_idempotent(self):
        once = normalize("0 8 * * *")
        assert normalize(once) == once

    def test_other_field_counts_left_alone(self):
        assert normalize("* * *") == "* * *"


# ---------------------------------------------------------------------------
# TestIsValid
# ---------------------------------------------------------------------------

class TestIsValid:
    @pytest.mark.parametrize("expr", [
        "* * * * *",
        "0 8 * * *",
        "*/15 * * * *",
        "0 9 * * 1-5",
        "0 0 8 * * *",
    ])
    def test_valid_expressions(self, expr):
        assert is_valid(expr) is True

    @pytest.mark.parametrize("expr", [
        "",
        "* * *",
        "* * * * * * *",
        "60 * * * *",
        "0 25 * * *",
        "not a cron",
    ])
    def test_invalid_expressions(self, expr):
        assert is_valid(expr) is False


# ---------------------------------------------------------------------------
# TestMostRecentFiring
# ---------------------------------------------------------------------------

class TestMostRecentFiring:
    def test_earlier_today(self):
        now = datetime(2026, 2, 3, 9, 30)
        assert most_recent_firing("0 8 * * *", now) == datetime(2026, 2, 3, 8, 0)

    def test_yesterday_when_not_yet_fired_today(self):
        now = datetime(2026, 2, 3, 7, 0)
        assert most_recent_firing("0 8 * * *", now) == datetime(2026, 2, 2, 8, 0)

    def test_exact_firing_instant_is_included(self):
        now = datetime(2026, 2, 3, 8, 0)
        assert most_recent_firing("0 8 * * *", now) == now

    def test_six_field_expression(self):
        now = datetime(2026, 2, 3, 8, 0, 45)
        assert most_recent_firing("30 0 8 * * *", now) == datetime(2026, 2, 3, 8, 0, 30)

    def test_preserves_timezone(self):
        now = datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc)
        result = most_recent_firing("0 6 * * *", now)
        assert result == datetime(2026, 2, 3, 6, 0, tzinfo=timezone.utc)
        assert result.tzinfo is not None

    def test_invalid_expression_returns_none(self):
        assert most_recent_firing("bogus", datetime(2026, 2, 3)) is None
        assert most_recent_firing("61 * * * *", datetime(2026, 2, 3)) is None


# ---------------------------------------------------------------------------
# TestDescribe
# ---------------------------------------------------------------------------

class TestDescribe:
    @pytest.mark.parametrize("expr,expected", [
        ("* * * * *", "Every minute"),
        ("*/15 * * * *", "Every 15 minutes"),
        ("30 * * * *", "At 30 minutes past the hour"),
        ("0 */2 * * *", "Every 2 hours"),
        ("0 8 * * *", "At 8:00 AM"),
        ("30 18 * * *", "At 6:30 PM"),
        ("0 0 * * *", "At 12:00 AM"),
        ("0 8 * * 1", "At 8:00 AM, only on Monday"),
        ("0 8 1 * *", "At 8:00 AM, on day 1 of the month"),
    ])
    def test_common_shapes(self, expr, expected):
        assert describe(expr) == expected

    def test_uncommon_shape_returns_none(self):
        assert describe("0 9 * * 1-5") is None
        assert describe("0 8 * 6 *") is None

    def test_invalid_returns_none(self):
        assert describe("nope") is None
