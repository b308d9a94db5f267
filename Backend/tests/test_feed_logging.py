from __future__ import annotations

import json

from app.core.logging import add_context_ids, build_processors, redact_secrets
from app.core.request_id import clear_request_id, get_run_id, new_request_id, set_request_id, with_run_id


def test_redact_secrets_by_key_and_value():
    event = redact_secrets(None, "info", {
        "event": "feed_source_attempt_failed",
        "Authorization": "Bearer abc",
        "endpoint": "/api/rentals?page=0&token=abc123",
        "error": "upstream said Bearer abc123 is invalid",
        "status_code": 401,
    })

    assert event["Authorization"] == "***redacted***"
    assert event["endpoint"] == "/api/rentals?page=0&token=***redacted***"
    assert "abc123" not in event["error"]
    assert event["status_code"] == 401


def test_context_ids_are_attached():
    set_request_id(new_request_id("req-42"))
    try:
        with with_run_id("run-7") as run_id:
            event = add_context_ids(None, "info", {"event": "x"})
        assert run_id == "run-7"
        assert event["request_id"] == "req-42"
        assert event["run_id"] == "run-7"
        assert get_run_id() is None
    finally:
        clear_request_id()


def test_new_request_id_rejects_oversized_incoming():
    assert new_request_id("  abc  ") == "abc"
    assert len(new_request_id("x" * 500)) == 32
    assert len(new_request_id(None)) == 32


def test_json_processor_chain_renders_one_line():
    event: dict = {"event": "feed_aggregate_round", "token": "s3cret"}
    for processor in build_processors("feed", "json"):
        event = processor(None, "info", event)

    line = json.loads(event)
    assert line["event"] == "feed_aggregate_round"
    assert line["service"] == "feed"
    assert line["level"] == "info"
    assert line["token"] == "***redacted***"
    assert "ts" in line
