"""Request middlewares: rate limiting, tracing and timing."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta

from flask import Flask, g, jsonify

logger = logging.getLogger(__name__)

_TRAIL_KEY = "middleware_trail"


class RequestLimiter:
    """Rejects requests that arrive sooner than ``interval`` seconds after the last accepted one."""

    def __init__(self, interval: float | timedelta = 1) -> None:
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        self._interval = int(interval)
        self._last_request = 0
        self._lock = threading.Lock()

    def allow(self, now: int | None = None) -> bool:
        """Record a request at ``now`` (Unix seconds) and tell whether it may proceed."""
        if now is None:
            now = int(time.time())
        with self._lock:
            if now - self._last_request < self._interval:
                return False
            self._last_request = now
            return True

    def register(self, app: Flask) -> Flask:
        """Install the limiter in front of every request of ``app``."""

        @app.before_request
        def _limit():
            if not self.allow():
                return jsonify(error="Request too frequently"), 429
            return None

        return app


def _record(event: str) -> list[str]:
    trail = g.setdefault(_TRAIL_KEY, [])
    trail.append(event)
    logger.info("%s", event)
    return trail


def trace_middleware(app: Flask, name: str) -> Flask:
    """Record and log ``start <name>`` before and ``end <name>`` after each request.

    The events of the current request are kept in order in ``flask.g.middleware_trail``.
    """

    @app.before_request
    def _start():
        _record(f"start {name}")
        return None

    @app.after_request
    def _end(response):
        _record(f"end {name}")
        return response

    return app


def query_spend_time(app: Flask) -> Flask:
    """Log how many milliseconds each request took."""

    @app.before_request
    def _mark():
        g.query_started_ms = time.time_ns() // 1_000_000

    @app.after_request
    def _report(response):
        started = g.get("query_started_ms")
        if started is not None:
            elapsed = time.time_ns() // 1_000_000 - started
            logger.info("query spend time msg=%dms", elapsed)
        return response

    return app