import time
from datetime import datetime

import pytest
from flask import Flask

from devopsweb.loadtest import (
    CpuLoadTest,
    MemoryLoadTest,
    burn_cpu,
    burn_memory,
    register_loadtest_routes,
)


def test_burn_cpu_runs_for_duration():
    load = CpuLoadTest()
    load.duration_seconds = 1
    started = time.monotonic()
    rounds = burn_cpu(load.duration_seconds, load.workers)
    assert time.monotonic() - started >= 1
    assert rounds > 0


def test_burn_cpu_without_workers():
    assert burn_cpu(0, 0) == 0


def test_load_memory():
    load = MemoryLoadTest()
    load.duration = 0
    assert burn_memory(load.duration, 1) == 1024 * 1024


def test_burn_memory_negative_size():
    with pytest.raises(ValueError):
        burn_memory(0, -1)


def test_defaults():
    assert CpuLoadTest().duration_seconds == 60
    assert CpuLoadTest().workers == 10
    assert MemoryLoadTest().duration == 60
    assert MemoryLoadTest().size_mb == 512


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 60), ("", 60), ("120", 120), ("abc", 60), ("+7", 7), ("-3", -3), ("1.5", 60)],
)
def test_resolve_duration(raw, expected):
    assert CpuLoadTest().resolve_duration(raw) == expected
    assert MemoryLoadTest().resolve_duration(raw) == expected


@pytest.mark.parametrize("raw, expected", [(None, 512), ("256", 256), ("big", 512)])
def test_resolve_size(raw, expected):
    assert MemoryLoadTest().resolve_size(raw) == expected


def test_cpu_start_finishes():
    thread = CpuLoadTest(workers=2).start(0)
    thread.join(timeout=10)
    assert not thread.is_alive()


def test_memory_start_finishes():
    thread = MemoryLoadTest().start(0, 0)
    thread.join(timeout=10)
    assert not thread.is_alive()


@pytest.fixture
def client():
    return register_loadtest_routes(Flask("loadtest-test")).test_client()


def test_cpu_route(client):
    body = client.get("/loadtest/cpu?duration=0").get_json()
    assert body["msg"] == "start cpu load test"
    assert body["duration seconds"] == 0
    assert datetime.fromisoformat(body["start time"]).tzinfo is not None


def test_memory_route(client):
    body = client.get("/loadtest/memory?duration=0&size=0").get_json()
    assert body["msg"] == "start memory load test"
    assert body["duration seconds"] == 0
    assert body["size mb"] == 0


def test_memory_route_bad_duration_uses_default(client):
    body = client.get("/loadtest/memory?duration=soon&size=0").get_json()
    assert body["duration seconds"] == 60
    assert body["size mb"] == 0