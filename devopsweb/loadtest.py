"""CPU and memory load generators and their HTTP endpoints."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from flask import Flask, jsonify, request

logger = logging.getLogger(__name__)

DEFAULT_DURATION = 60
DEFAULT_SIZE_MB = 512
DEFAULT_CPU_WORKERS = 10

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _parse_int(raw: str) -> int:
    if not _INTEGER.fullmatch(raw):
        raise ValueError(f"invalid integer: {raw!r}")
    return int(raw)


def _resolve(raw: str | None, default: int, what: str) -> int:
    if not raw:
        return default
    try:
        return _parse_int(raw)
    except ValueError as exc:
        logger.error("parse %s error, use default %s=%d err=%s", what, what, default, exc)
        return default


def _start_daemon(target, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def burn_cpu(duration: float, workers: int) -> int:
    """Keep ``workers`` threads busy for ``duration`` seconds; return the rounds completed."""
    stop = threading.Event()
    rounds_done: list[int] = []

    def work() -> None:
        rounds = 0
        while not stop.is_set():
            x = 0
            while x < 1_000_000:
                x = x * x + 1
            rounds += 1
        rounds_done.append(rounds)

    threads = [_start_daemon(work) for _ in range(workers)]
    stop.wait(max(duration, 0))
    stop.set()
    for thread in threads:
        thread.join()
    logger.info("cpu load test finished duration_seconds=%s", duration)
    return sum(rounds_done)


def burn_memory(duration: float, size_mb: int) -> int:
    """Hold ``size_mb`` MiB of filled memory for ``duration`` seconds; return the byte count."""
    if size_mb < 0:
        raise ValueError(f"size must not be negative: {size_mb}")
    buffer = bytearray(b"\x01") * (size_mb * 1024 * 1024)
    time.sleep(max(duration, 0))
    logger.info("memory load test finished duration_seconds=%s size_mb=%d", duration, size_mb)
    return len(buffer)


@dataclass
class CpuLoadTest:
    """CPU load settings with defaults for missing or malformed requests."""

    duration_seconds: int = DEFAULT_DURATION
    workers: int = DEFAULT_CPU_WORKERS

    def resolve_duration(self, raw: str | None) -> int:
        return _resolve(raw, self.duration_seconds, "duration")

    def start(self, duration: int) -> threading.Thread:
        return _start_daemon(burn_cpu, duration, self.workers)


@dataclass
class MemoryLoadTest:
    """Memory load settings with defaults for missing or malformed requests."""

    duration: int = DEFAULT_DURATION
    size_mb: int = DEFAULT_SIZE_MB

    def resolve_duration(self, raw: str | None) -> int:
        return _resolve(raw, self.duration, "duration")

    def resolve_size(self, raw: str | None) -> int:
        return _resolve(raw, self.size_mb, "size")

    def start(self, duration: int, size_mb: int) -> threading.Thread:
        return _start_daemon(burn_memory, duration, size_mb)


def _now_rfc3339() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def register_loadtest_routes(app: Flask) -> Flask:
    """Add /loadtest/cpu and /loadtest/memory to ``app``."""
    cpu = CpuLoadTest()
    memory = MemoryLoadTest()

    @app.get("/loadtest/cpu")
    def cpu_load():
        duration = cpu.resolve_duration(request.args.get("duration"))
        cpu.start(duration)
        return jsonify(
            {
                "msg": "start cpu load test",
                "start time": _now_rfc3339(),
                "duration seconds": duration,
            }
        )

    @app.get("/loadtest/memory")
    def memory_load():
        duration = memory.resolve_duration(request.args.get("duration"))
        size_mb = memory.resolve_size(request.args.get("size"))
        memory.start(duration, size_mb)
        return jsonify(
            {
                "msg": "start memory load test",
                "start time": _now_rfc3339(),
                "duration seconds": duration,
                "size mb": size_mb,
            }
        )

    return app