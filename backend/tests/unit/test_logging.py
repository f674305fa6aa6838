import json
import logging

from nearby.obs.logging import (
    REDACTED,
    JsonLogFormatter,
    RedactionFilter,
    SamplingFilter,
    bind_context,
    log_context,
    redact_field,
    reset_context,
)


def _record(level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="nearby.test",
        level=level,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_coordinates_and_salts_are_redacted():
    for key in ("lat", "lng", "lon", "pub_lat", "latitude", "session_salt", "geo", "admin_token", "X-Coord"):
        assert redact_field(key, 1.23) == REDACTED


def test_unrelated_fields_pass_through():
    assert redact_field("latency_ms", 12.5) == 12.5
    assert redact_field("user_id", "u1") == "u1"
    assert redact_field("zoom_bucket", 3) == 3


def test_nested_values_are_redacted():
    value = redact_field("context", {"lat": 40.0, "reason": "cooldown"})
    assert value == {"lat": REDACTED, "reason": "cooldown"}


def test_long_values_are_clipped():
    assert len(redact_field("note", "x" * 1000)) == 257
    assert len(redact_field("ids", list(range(50)))) == 11


def test_filter_scrubs_record_in_place():
    record = _record(pub_lng=-74.0, reason="triggered")
    assert RedactionFilter().filter(record) is True
    assert record.pub_lng == REDACTED
    assert record.reason == "triggered"


def test_formatter_emits_json_with_context():
    token = bind_context(request_id="req-1", user_id="u1")
    try:
        line = JsonLogFormatter().format(_record(lat=40.0, reason="triggered"))
    finally:
        reset_context(token)
    payload = json.loads(line)
    assert payload["msg"] == "hello world"
    assert payload["level"] == "info"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "u1"
    assert payload["lat"] == REDACTED
    assert payload["reason"] == "triggered"


def test_context_is_cleared_after_reset():
    token = bind_context(request_id="req-2", route=None)
    assert dict(log_context()) == {"request_id": "req-2"}
    reset_context(token)
    payload = json.loads(JsonLogFormatter().format(_record()))
    assert "request_id" not in payload


def test_sampling_only_drops_info():
    never = SamplingFilter(0.0)
    assert never.filter(_record(logging.INFO)) is False
    assert never.filter(_record(logging.WARNING)) is True
    assert SamplingFilter(1.0).filter(_record(logging.INFO)) is True
