# Overview: Process-wide online/offline gate that refuses writes while the store is unreachable.

"""
Connectivity Gate

A single boolean ``is_online`` refreshed from two sources:
- network-change signals (``handle_network_change``): going offline is
  applied immediately, coming back online triggers a fresh probe;
- a periodic health probe of the backing store every
  CONNECTIVITY_PROBE_INTERVAL seconds, bounded by CONNECTIVITY_PROBE_TIMEOUT.
  Timeout or failure means offline, success means online.

Write operations are wrapped with ``requires_online`` and raise
OfflineError before any store round-trip. Reads are never gated.

The monitor is a daemon thread with an explicit start/stop lifecycle; stop()
joins it so no timer outlives the app that started it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from functools import wraps
from typing import Callable

import httpx

from .errors import OfflineError

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 30.0
DEFAULT_PROBE_TIMEOUT = 4.0


def database_probe(app) -> Callable[[], bool]:
    """Probe that runs SELECT 1 against the app's database."""
    def _probe() -> bool:
        from sqlalchemy import text
        from .extensions import db

        with app.app_context():
            try:
                db.session.execute(text("SELECT 1"))
            finally:
                db.session.remove()
        return True
    return _probe


def http_probe(url: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> Callable[[], bool]:
    """Probe that GETs a health URL; any 2xx/3xx/4xx answer proves reachability."""
    def _probe() -> bool:
        response = httpx.get(url, timeout=timeout)
        return response.status_code < 500
    return _probe


class ConnectivityGate:
    def __init__(self, app=None, probe: Callable[[], bool] | None = None):
        self._online = True
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self.probe = probe
        self.interval = DEFAULT_PROBE_INTERVAL
        self.timeout = DEFAULT_PROBE_TIMEOUT
        self._listeners: list[Callable[[bool], None]] = []
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.interval = float(app.config.get("CONNECTIVITY_PROBE_INTERVAL", DEFAULT_PROBE_INTERVAL))
        self.timeout = float(app.config.get("CONNECTIVITY_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT))

        url = app.config.get("CONNECTIVITY_PROBE_URL")
        if url:
            self.probe = http_probe(url, self.timeout)
        else:
            self.probe = database_probe(app)

        app.extensions["connectivity"] = self

        if app.config.get("CONNECTIVITY_MONITOR_ENABLED") and not app.config.get("TESTING"):
            self.start()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        """Register a callback invoked with the new state on every transition."""
        self._listeners.append(callback)

    def set_online(self, online: bool, reason: str | None = None) -> None:
        with self._state_lock:
            changed = self._online != online
            self._online = online

        if not changed:
            return

        if online:
            logger.info("Connectivity restored%s", f": {reason}" if reason else "")
        else:
            logger.warning("Connectivity lost%s", f": {reason}" if reason else "")

        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception:
                logger.exception("Connectivity listener failed")

    def ensure_online(self, operation: str | None = None) -> None:
        if not self._online:
            raise OfflineError(operation)

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def check_now(self) -> bool:
        """Run the probe once with the configured timeout and record the result."""
        if self.probe is None:
            return self._online

        # Submit under the lock so another caller cannot shut this executor
        # down in between
        with self._state_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="connectivity-probe")
            executor = self._executor
            future = executor.submit(self.probe)

        try:
            healthy = bool(future.result(timeout=self.timeout))
            reason = None if healthy else "health probe reported failure"
        except FutureTimeoutError:
            healthy = False
            reason = f"health probe timed out after {self.timeout:g}s"
            # A hung probe keeps its worker; use a fresh one next time
            with self._state_lock:
                executor.shutdown(wait=False)
                if self._executor is executor:
                    self._executor = None
        except Exception as exc:
            healthy = False
            reason = f"health probe failed: {exc.__class__.__name__}"

        self.set_online(healthy, reason)
        return healthy

    def handle_network_change(self, online: bool) -> bool:
        """OS/network signal: offline applies at once, online is confirmed by a probe."""
        if not online:
            self.set_online(False, "network interface reported offline")
            return False
        return self.check_now()

    # ------------------------------------------------------------------
    # Monitor lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="connectivity-monitor",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Connectivity monitor started (interval=%ss, timeout=%ss)", self.interval, self.timeout)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout if timeout is not None else self.timeout + 1)
        self._thread = None
        with self._state_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
        logger.debug("Connectivity monitor stopped")

    def _run(self) -> None:
        # Initial check, then every interval until stopped
        while not self._stop_event.is_set():
            try:
                self.check_now()
            except Exception:
                logger.exception("Connectivity check crashed")
            if self._stop_event.wait(self.interval):
                break


def requires_online(operation: str):
    """
    Refuse the wrapped write with OfflineError while the gate is offline.

    The gate is looked up at call time so tests and apps share one instance.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            from .extensions import connectivity

            connectivity.ensure_online(operation)
            return f(*args, **kwargs)
        return wrapper
    return decorator
