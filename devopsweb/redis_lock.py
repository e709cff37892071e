"""Redis-backed lock used to elect a single running master."""

from __future__ import annotations

import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)

REDIS_HOST_PORT = "192.168.1.201:6379"
HIGH_AVAILABLE_KEY = "ha_key_should_be_uniq"
LOCK_TTL_SECONDS = 25
UPDATE_INTERVAL_SECONDS = 20


def _split_host(host: str) -> tuple[str, int]:
    if ":" in host:
        name, _, port = host.rpartition(":")
        return name or "localhost", int(port)
    return host, 6379


class RedisLock:
    """An expiring key: set only when absent, refreshed only when present."""

    def __init__(self, key=HIGH_AVAILABLE_KEY, db=0, host=REDIS_HOST_PORT, client=None):
        self.key = key
        self.value = int(time.time())
        if client is None:
            hostname, port = _split_host(host)
            client = redis.Redis(host=hostname, port=port, db=db)
        self.client = client

    def set_lock(self) -> bool:
        """Take the lock if nobody holds it."""
        try:
            return bool(self.client.set(self.key, self.value, ex=LOCK_TTL_SECONDS, nx=True))
        except redis.RedisError:
            return False

    def update_lock(self, value: int) -> bool:
        """Refresh the lock with ``value``; fails when the key no longer exists."""
        try:
            return bool(self.client.set(self.key, value, ex=LOCK_TTL_SECONDS, xx=True))
        except redis.RedisError:
            return False


class HighAvailability:
    """Keeps a lock alive while master, or keeps trying to take it while standby."""

    def __init__(self, lock: RedisLock, interval: float = UPDATE_INTERVAL_SECONDS) -> None:
        self.lock = lock
        self.interval = interval
        self.should_run_as_master = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> bool:
        """Try to become master and start the background loop; return master state."""
        self._stop.clear()
        self.should_run_as_master = self.lock.set_lock()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return self.should_run_as_master

    def stop(self) -> None:
        """Stop the background loop."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self.should_run_as_master:
                if not self.lock.update_lock(int(time.time())):
                    logger.error(
                        "updating redis key %s failed; several replicas may run at once",
                        self.lock.key,
                    )
            elif self.lock.set_lock():
                self.should_run_as_master = True