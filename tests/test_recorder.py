"""
Unit tests for TelemetryRecorder: validation, store, text sink and JSON sink.
"""

import json
import logging
import re

import pytest

from edrtest.errors import ValidationError
from edrtest.events import Event
from edrtest.recorder import TelemetryRecorder
from edrtest.schema import required_attributes

PROCESS_EVENT = {
    "timestamp": "t",
    "username": "u",
    "process_name": "ls",
    "process_command": "ls -la",
    "process_id": 42,
}


def _tcp_event(port, **overrides):
    attrs = {
        "process_name": "edrtest",
        "process_command": "edrtest --tcp",
        "process_id": 4321,
        "protocol": "TCP",
        "data_in_bytes": 10,
        "destination_addr": "127.0.0.1",
        "destination_port": port,
        "source_addr": "127.0.0.1",
        "source_port": 50000,
    }
    attrs.update(overrides)
    return attrs


def _file_event(**overrides):
    attrs = {
        "process_name": "edrtest",
        "process_command": "edrtest -f x",
        "process_id": 4321,
        "file_path": "/tmp/x",
        "activity": "create",
    }
    attrs.update(overrides)
    return attrs


def test_record_appends_and_returns_event_unchanged(recorder):
    event = recorder.record("process_execution", PROCESS_EVENT)
    assert len(recorder) == 1
    assert event.kind == "process_execution"
    assert dict(event.attributes) == {**PROCESS_EVENT, "hostname": "testhost"}
    assert recorder.events == [event]


def test_record_stamps_timestamp_and_username(recorder):
    event = recorder.record("filesystem_activity", _file_event())
    assert event.actor == "testuser"
    assert event.timestamp
    assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}[+-]\d{2}:\d{2}$", event.timestamp)


def test_caller_supplied_timestamp_is_kept(recorder):
    event = recorder.record("filesystem_activity", _file_event(timestamp="2024-01-01T00:00:00"))
    assert event.timestamp == "2024-01-01T00:00:00"


def test_event_is_isolated_from_caller_dict(recorder):
    attrs = dict(PROCESS_EVENT)
    event = recorder.record("process_execution", attrs)
    attrs["process_name"] = "changed"
    assert event["process_name"] == "ls"
    with pytest.raises(TypeError):
        event.attributes["process_name"] = "changed"


@pytest.mark.parametrize(
    "kind",
    ["process_execution", "filesystem_activity", "network_tcp", "network_http", "network_udp"],
)
def test_strict_subset_raises_and_is_not_stored(recorder, kind):
    # timestamp/username are stamped by the recorder, so drop the rest
    attrs = {name: "v" for name in required_attributes(kind)[2:-1]}
    with pytest.raises(ValidationError) as excinfo:
        recorder.record(kind, attrs)
    assert excinfo.value.result.missing == (required_attributes(kind)[-1],)
    assert recorder.events_of_kind(kind) == []


def test_missing_activity_leaves_only_logging_error(recorder):
    attrs = _file_event()
    del attrs["activity"]
    with pytest.raises(ValidationError, match="activity"):
        recorder.record("filesystem_activity", attrs)

    events = recorder.events
    assert len(events) == 1
    assert events[0].kind == "logging_error"
    assert "activity" in events[0]["error"]
    assert events[0]["missing_attributes"] == "activity"
    assert events[0]["failed_kind"] == "filesystem_activity"
    assert events[0]["hostname"] == "testhost"


def test_validation_failure_writes_error_line(recorder):
    with pytest.raises(ValidationError):
        recorder.record("process_execution", {})
    text = recorder.text_path.read_text(encoding="utf-8")
    assert re.search(r"^\[\S+\] ERROR: logging_error ", text, re.MULTILINE)


def test_text_sink_written_before_persist(recorder):
    recorder.record("process_execution", PROCESS_EVENT)
    lines = recorder.text_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert re.match(r"^\[\S+\] INFO: process_execution \{", lines[0])
    assert "'process_command': 'ls -la'" in lines[0]
    assert not recorder.json_path.exists()


def test_persist_process_scenario(recorder):
    recorder.record("process_execution", PROCESS_EVENT)
    path = recorder.persist()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == [{"kind": "process_execution", **PROCESS_EVENT, "hostname": "testhost"}]

    text = recorder.text_path.read_text(encoding="utf-8")
    assert f"Persisted 1 events to {recorder.json_path}" in text


def test_persist_round_trip_preserves_order(recorder):
    recorded = [
        recorder.record("network_tcp", _tcp_event(80)),
        recorder.record("filesystem_activity", _file_event()),
        recorder.record("network_tcp", _tcp_event(443)),
    ]
    recorder.persist()

    data = json.loads(recorder.json_path.read_text(encoding="utf-8"))
    assert len(data) == len(recorded)
    assert data == [event.to_dict() for event in recorded]


def test_persist_overwrites_existing_file(recorder):
    recorder.json_path.parent.mkdir(parents=True, exist_ok=True)
    recorder.json_path.write_text('[{"stale": true}, {"stale": true}]', encoding="utf-8")
    recorder.record("process_execution", PROCESS_EVENT)
    recorder.persist()
    data = json.loads(recorder.json_path.read_text(encoding="utf-8"))
    assert len(data) == 1
    assert "stale" not in data[0]


def test_persist_empty_store_writes_empty_array(recorder):
    recorder.persist()
    assert json.loads(recorder.json_path.read_text(encoding="utf-8")) == []


def test_events_of_kind_filters_in_order(recorder):
    first = recorder.record("network_tcp", _tcp_event(80))
    recorder.record("filesystem_activity", _file_event())
    second = recorder.record("network_tcp", _tcp_event(8080))

    assert recorder.events_of_kind("network_tcp") == [first, second]
    assert recorder.events_of_kind("network_udp") == []
    assert recorder.events_of_kind("no_such_kind") == []


def test_reset_clears_store(recorder):
    recorder.record("process_execution", PROCESS_EVENT)
    recorder.reset()
    assert len(recorder) == 0
    assert "Cleared all logged events" in recorder.text_path.read_text(encoding="utf-8")


def test_record_error(recorder):
    event = recorder.record_error("network", "connection refused", process_id=4321)
    assert event.kind == "network_error"
    assert event["error"] == "connection refused"
    assert event["process_id"] == 4321


def test_text_log_truncated_on_construction(tmp_path, context):
    text_path = tmp_path / "run.log"
    text_path.write_text("previous run\n", encoding="utf-8")
    with TelemetryRecorder(tmp_path / "run.json", text_path, context=context) as rec:
        rec.record("process_execution", PROCESS_EVENT)
    assert "previous run" not in text_path.read_text(encoding="utf-8")


def test_recorders_do_not_share_text_sinks(tmp_path, context):
    with TelemetryRecorder(tmp_path / "a.json", tmp_path / "a.log", context=context) as a, \
            TelemetryRecorder(tmp_path / "b.json", tmp_path / "b.log", context=context) as b:
        a.record("process_execution", PROCESS_EVENT)
        assert len(b) == 0
    assert (tmp_path / "a.log").read_text(encoding="utf-8")
    assert (tmp_path / "b.log").read_text(encoding="utf-8") == ""


def test_record_stamps_hostname(recorder):
    event = recorder.record("filesystem_activity", _file_event())
    assert event["hostname"] == "testhost"

    other = recorder.record("filesystem_activity", _file_event(hostname="elsewhere"))
    assert other["hostname"] == "elsewhere"


def test_failed_persist_removes_temp_file(recorder):
    recorder.json_path.mkdir(parents=True)
    recorder.record("process_execution", PROCESS_EVENT)

    with pytest.raises(OSError):
        recorder.persist()

    assert recorder.json_path.is_dir()
    assert not recorder.json_path.with_name(recorder.json_path.name + ".tmp").exists()


def test_text_logger_is_not_registered_globally(recorder):
    assert recorder._text_logger.name not in logging.Logger.manager.loggerDict


def test_events_are_hashable(recorder):
    event = recorder.record("process_execution", PROCESS_EVENT)
    twin = Event(kind=event.kind, attributes=dict(event.attributes))
    assert hash(event) == hash(twin)
    assert len({event, twin}) == 1


def test_kind_attribute_is_rejected(recorder):
    with pytest.raises(ValueError, match="reserved"):
        recorder.record("process_execution", {**PROCESS_EVENT, "kind": "spoofed"})
    assert len(recorder) == 0
