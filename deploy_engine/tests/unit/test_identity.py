"""Unit tests for deploy_engine.identity."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from deploy_engine.config import Environment
from deploy_engine.identity import generate_attempt_id, parse_attempt_id

_NOW = datetime(2026, 3, 14, 9, 26, 53, tzinfo=UTC)


class TestGenerateAttemptId:
    def test_format(self):
        assert generate_attempt_id("dev", 42, now=_NOW) == "dev-20260314-092653-000042"

    def test_ordinal_disambiguates_same_second(self):
        first = generate_attempt_id(Environment.PROD, 1, now=_NOW)
        second = generate_attempt_id(Environment.PROD, 2, now=_NOW)
        assert first != second

    def test_sortable_by_time(self):
        earlier = generate_attempt_id("test", 999, now=_NOW)
        later = generate_attempt_id("test", 1, now=_NOW + timedelta(seconds=1))
        assert earlier < later

    def test_converts_to_utc(self):
        local = _NOW.astimezone(timezone(timedelta(hours=5)))
        assert generate_attempt_id("dev", 0, now=local) == "dev-20260314-092653-000000"

    def test_large_ordinal_wraps(self):
        assert generate_attempt_id("dev", 1_000_001, now=_NOW).endswith("-000001")

    def test_negative_ordinal_rejected(self):
        with pytest.raises(ValueError):
            generate_attempt_id("dev", -1, now=_NOW)

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValueError):
            generate_attempt_id("staging", 1, now=_NOW)

    def test_valid_kubernetes_name(self):
        attempt_id = generate_attempt_id("prod", 123456, now=_NOW)
        assert attempt_id == attempt_id.lower()
        assert len(f"mqsc-snapshot-{attempt_id}") <= 63


class TestParseAttemptId:
    def test_round_trip(self):
        parsed = parse_attempt_id(generate_attempt_id("prod", 7, now=_NOW))
        assert parsed.environment == Environment.PROD
        assert parsed.timestamp == _NOW
        assert parsed.run_ordinal == 7

    @pytest.mark.parametrize("value", ["", "dev-2026-1", "staging-20260314-092653-000001", "dev-20260314-092653-1"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_attempt_id(value)
