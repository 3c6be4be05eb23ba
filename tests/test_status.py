"""Tests for querying and decoding passenger-status."""

import time

import pytest
from conftest import XML_FIXTURE

from passenger_exporter.interval import parse_interval
from passenger_exporter.status import (
    DecodeError,
    Info,
    StatusError,
    StatusTimeout,
    fetch_status,
    parse_output,
    query_status,
)


class TestParseOutput:
    def test_top_level_fields(self, xml_bytes):
        info = parse_output(xml_bytes)
        assert info.passenger_version == "5.1.12"
        assert info.app_count == "1"
        assert info.current_process_count == "3"
        assert info.max_process_count == "12"
        assert info.capacity_used == "3"
        assert info.top_level_requests_in_queue == "0"

    def test_supergroups(self, xml_bytes):
        info = parse_output(xml_bytes)
        assert len(info.supergroups) == 1
        sg = info.supergroups[0]
        assert sg.name == "/src/app/my_app (production)"
        assert sg.state == "READY"
        assert sg.requests_in_queue == "0"
        assert sg.group.processes_spawning == "0"
        assert sg.group.default == "true"
        assert sg.group.options.app_root == "/src/app/my_app"
        assert sg.group.options.spawn_method == "smart"

    def test_processes(self, xml_bytes):
        info = parse_output(xml_bytes)
        processes = info.supergroups[0].group.processes
        assert [p.pid for p in processes] == ["14010", "14013", "14016"]
        assert processes[0].real_memory == "271032"
        assert processes[0].requests_processed == "1742"
        assert processes[2].uptime == "20m 38s"
        assert processes[2].code_revision == "6ab5fe1"
        for proc in processes:
            assert proc.process_group_id == "2254"
            parse_interval(proc.uptime)

    def test_missing_elements_are_empty(self):
        info = parse_output(b"<info><supergroups><supergroup><name>a</name></supergroup></supergroups></info>")
        assert info.passenger_version == ""
        sg = info.supergroups[0]
        assert sg.requests_in_queue == ""
        assert sg.group.processes == []
        assert sg.group.options.app_root == ""

    def test_unknown_elements_are_ignored(self):
        info = parse_output(b"<info><max>4</max><surprise><max>9</max></surprise></info>")
        assert info.max_process_count == "4"
        assert info.supergroups == []

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"<info>",
            b"not xml",
            b"<info></nfo>",
            b'<?xml version="1.0" encoding="bogus"?><info/>',
            b'<?xml version="1.0" encoding="shift_jis"?><info/>',
        ],
    )
    def test_malformed(self, data):
        with pytest.raises(DecodeError):
            parse_output(data)

    def test_duplicate_pid(self):
        data = (
            b"<info><supergroups>"
            b"<supergroup><name>a</name><group><processes>"
            b"<process><pid>1</pid></process>"
            b"</processes></group></supergroup>"
            b"<supergroup><name>b</name><group><processes>"
            b"<process><pid>1</pid></process>"
            b"</processes></group></supergroup>"
            b"</supergroups></info>"
        )
        with pytest.raises(DecodeError, match="pid 1"):
            parse_output(data)

    def test_duplicate_supergroup_name(self):
        data = (
            b"<info><supergroups>"
            b"<supergroup><name>a</name><group><processes>"
            b"<process><pid>1</pid></process><process><pid>2</pid></process>"
            b"</processes></group></supergroup>"
            b"<supergroup><name>a</name><group><processes>"
            b"<process><pid>3</pid></process>"
            b"</processes></group></supergroup>"
            b"</supergroups></info>"
        )
        with pytest.raises(DecodeError, match="supergroup 'a'"):
            parse_output(data)

    def test_processes_iterates_in_document_order(self, xml_bytes):
        info = parse_output(xml_bytes)
        assert [p.pid for p in info.processes()] == ["14010", "14013", "14016"]


class TestFetchStatus:
    def test_captures_stdout(self, xml_bytes):
        assert fetch_status(["cat", str(XML_FIXTURE)], 5.0) == xml_bytes

    def test_stderr_is_discarded(self):
        out = fetch_status(["sh", "-c", "echo out; echo err >&2"], 5.0)
        assert out == b"out\n"

    def test_non_zero_exit(self):
        with pytest.raises(StatusError, match="exited with status 3"):
            fetch_status(["sh", "-c", "exit 3"], 5.0)

    def test_killed_by_signal(self):
        with pytest.raises(StatusError, match="killed by signal 9"):
            fetch_status(["sh", "-c", "kill -9 $$"], 5.0)

    def test_command_not_found(self):
        with pytest.raises(StatusError, match="failed to run"):
            fetch_status(["/nonexistent/passenger-status"], 5.0)

    def test_timeout(self):
        start = time.monotonic()
        with pytest.raises(StatusTimeout):
            fetch_status(["sleep", "1"], 0.001)
        assert time.monotonic() - start < 0.5

    def test_timeout_is_a_status_error(self):
        with pytest.raises(StatusError):
            fetch_status(["sleep", "1"], 0.001)


def test_query_status(xml_bytes):
    info = query_status(["cat", str(XML_FIXTURE)], 5.0)
    assert isinstance(info, Info)
    assert info == parse_output(xml_bytes)
