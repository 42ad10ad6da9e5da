from __future__ import annotations

import json
import logging

from mppt_agent.observability import (
    JsonLogFormatter,
    TraceContextFilter,
    _parse_header_pairs,
    cycle_context,
    get_cycle_id,
)


def _format(record: logging.LogRecord) -> dict:
    TraceContextFilter("mppt-agent").filter(record)
    return json.loads(JsonLogFormatter().format(record))


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("mppt_agent.test", logging.INFO, __file__, 1, message, (), None)
    record.__dict__.update(extra)
    return record


def test_cycle_id_is_scoped_to_block():
    assert get_cycle_id() is None
    with cycle_context("abc123") as cycle_id:
        assert cycle_id == "abc123"
        payload = _format(_record("publishing"))
    assert get_cycle_id() is None
    assert payload["cycle_id"] == "abc123"
    assert payload["service"] == "mppt-agent"
    assert payload["message"] == "publishing"


def test_generated_cycle_ids_differ():
    with cycle_context() as first:
        pass
    with cycle_context() as second:
        pass
    assert first and second and first != second


def test_extra_fields_are_nested():
    payload = _format(_record("cycle done", messages=12))
    assert payload["extra"] == {"messages": 12}
    assert payload["cycle_id"] is None


def test_header_pairs():
    assert _parse_header_pairs("a=1, b = two,broken,=x") == {"a": "1", "b": "two"}
    assert _parse_header_pairs(None) == {}
