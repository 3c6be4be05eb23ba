"""Shared test fixtures for passenger_exporter."""

from pathlib import Path

import pytest

from passenger_exporter.collector import PassengerCollector
from passenger_exporter.status import Process

TESTDATA = Path(__file__).parent / "testdata"
XML_FIXTURE = TESTDATA / "passenger_xml_output.xml"
SCRAPE_FIXTURE = TESTDATA / "scrape_output.txt"


def procs(*pids: str) -> list[Process]:
    """Build a process list in wire order from bare pids."""
    return [Process(pid=pid) for pid in pids]


@pytest.fixture
def xml_bytes() -> bytes:
    return XML_FIXTURE.read_bytes()


@pytest.fixture
def collector() -> PassengerCollector:
    """A collector that reads the captured passenger-status document."""
    return PassengerCollector(["cat", str(XML_FIXTURE)], timeout=5.0)
