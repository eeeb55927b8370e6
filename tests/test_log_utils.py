"""Tests for callguard logging utilities."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from callguard._log_utils import _apply_guard_context_to_extra


@pytest.fixture
def sample_context() -> dict[str, Any]:
    return {"name": "fetch-user", "phase": "FIRED"}


class TestApplyGuardContextToExtra:
    """Tests for _apply_guard_context_to_extra helper."""

    def test_dict_mode_adds_nested_dict(self, sample_context: dict[str, Any]) -> None:
        extra: dict[str, Any] = {}
        _apply_guard_context_to_extra(
            extra,
            key="callguard_guard",
            prefix="callguard.guard",
            ctx=sample_context,
            mode="dict",
        )

        assert extra["callguard_guard"] == sample_context
        # Verify it's a copy, not the same object
        assert extra["callguard_guard"] is not sample_context

    def test_flatten_mode_adds_prefixed_keys(
        self, sample_context: dict[str, Any]
    ) -> None:
        extra: dict[str, Any] = {}
        _apply_guard_context_to_extra(
            extra,
            key="callguard_guard",
            prefix="callguard.guard",
            ctx=sample_context,
            mode="flatten",
        )

        assert "callguard_guard" not in extra
        assert extra["callguard.guard.name"] == "fetch-user"
        assert extra["callguard.guard.phase"] == "FIRED"

    def test_flatten_mode_converts_non_primitives_to_string(self) -> None:
        ctx = {
            "string_val": "hello",
            "int_val": 42,
            "float_val": 3.14,
            "bool_val": True,
            "none_val": None,
            "list_val": [1, 2, 3],
            "dict_val": {"nested": "value"},
        }
        extra: dict[str, Any] = {}
        _apply_guard_context_to_extra(
            extra, key="callguard_test", prefix="callguard.test", ctx=ctx, mode="flatten"
        )

        assert extra["callguard.test.string_val"] == "hello"
        assert extra["callguard.test.int_val"] == 42
        assert extra["callguard.test.float_val"] == 3.14
        assert extra["callguard.test.bool_val"] is True
        assert extra["callguard.test.none_val"] is None
        assert extra["callguard.test.list_val"] == "[1, 2, 3]"
        assert extra["callguard.test.dict_val"] == "{'nested': 'value'}"

    def test_json_mode_adds_compact_string(
        self, sample_context: dict[str, Any]
    ) -> None:
        extra: dict[str, Any] = {}
        _apply_guard_context_to_extra(
            extra,
            key="callguard_guard",
            prefix="callguard.guard",
            ctx=sample_context,
            mode="json",
        )

        assert extra["callguard_guard"] == '{"name":"fetch-user","phase":"FIRED"}'


class TestLogRecordAccessibility:
    """Tests to verify flattened attributes are accessible on LogRecord.__dict__."""

    def test_flattened_attrs_accessible_via_record_dict(self) -> None:
        extra: dict[str, Any] = {}
        _apply_guard_context_to_extra(
            extra,
            key="callguard_guard",
            prefix="callguard.guard",
            ctx={"name": "job", "phase": "TIMED_OUT"},
            mode="flatten",
        )

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="test message",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)

        assert record.__dict__["callguard.guard.name"] == "job"
        assert record.__dict__["callguard.guard.phase"] == "TIMED_OUT"
