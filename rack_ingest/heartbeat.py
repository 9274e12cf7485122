"""Heartbeat monitor: periodic ONLINE ⇄ OFFLINE sweep.

Every sweep walks the whole live state cache:

- ONLINE  and now - lastHeartbeat >  threshold → OFFLINE
- OFFLINE and now - lastHeartbeat <= threshold → ONLINE

A transition updates the device row, emits `deviceStatus` and raises an
OFFLINE/ONLINE alert keyed by device only. Recovery is only seen at the
next sweep, not when the heartbeat arrives.

Device checks run on a small pool. Each check gets its own timeout from
the moment a worker starts it, so checks queued behind a stuck one are
not written off. When every worker is held by a timed-out check, the
queued checks move to a fresh pool; a device whose previous check is
still running is skipped until it returns.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Optional, Set, Tuple

from .alerts.deduplicator import AlertDeduplicator
from .alerts.models import AlertSubject, AlertType
from .errors import PersistenceFailure
from .live_state import LiveStateCache, LiveStateEntry, Liveness
from .notifications.broadcaster import DEVICE_STATUS
from .notifications.service import NotificationService
from .persistence.base import from_epoch
from .persistence.devices import DeviceRepository
from .persistence.models import DeviceUpdate

logger = logging.getLogger(__name__)

DEFAULT_OFFLINE_THRESHOLD = 30.0
DEFAULT_SWEEP_INTERVAL = 10.0
DEFAULT_CHECK_TIMEOUT = 2.0


class HeartbeatMonitor:
    def __init__(
        self,
        devices: DeviceRepository,
        live_state: LiveStateCache,
        alerts: AlertDeduplicator,
        notifications: NotificationService,
        offline_threshold: float = DEFAULT_OFFLINE_THRESHOLD,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ):
        self._devices = devices
        self._live_state = live_state
        self._alerts = alerts
        self._notifications = notifications
        self._offline_threshold = offline_threshold
        self._sweep_interval = sweep_interval
        self._check_timeout = check_timeout
        self._clock = clock

        self._max_workers = max_workers
        self._poll_interval = min(0.05, check_timeout)
        self._pool = self._new_pool()
        self._in_flight: Dict[str, Future] = {}
        self._hung: Set[Future] = set()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Metrics
        self._sweeps = 0
        self._transitions = {Liveness.ONLINE: 0, Liveness.OFFLINE: 0}
        self._failed_checks = 0
        self._pool_replacements = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="heartbeat-monitor")
        self._thread.start()
        logger.info(
            "[HEARTBEAT] Started threshold=%.1fs interval=%.1fs",
            self._offline_threshold, self._sweep_interval,
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        self._pool.shutdown(wait=False, cancel_futures=True)
        logger.info("[HEARTBEAT] Stopped. %s", self.metrics)

    def _run(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception as e:
                logger.exception("[HEARTBEAT] Sweep error: %s", e)

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """One pass over every tracked device. Returns the pass counters.

        Each check gets `check_timeout` seconds from the moment a worker
        picks it up; a check still queued behind busy workers is not
        counted as failed. Devices whose check from an earlier sweep is
        still running are skipped.
        """
        now = self._clock() if now is None else now
        counts = {"checked": 0, "offline": 0, "online": 0, "failed": 0, "skipped": 0}

        try:
            entries = self._live_state.items()
        except Exception as e:
            logger.error("[HEARTBEAT] Live state unavailable, sweep skipped: %s", e)
            return counts

        started: Dict[str, float] = {}
        pending: Dict[Future, Tuple[str, LiveStateEntry]] = {}
        for device_id, entry in entries:
            if self._is_in_flight(device_id):
                counts["skipped"] += 1
                logger.debug("[HEARTBEAT] Previous check still running device=%s", device_id)
                continue
            pending[self._submit(device_id, entry, now, started)] = (device_id, entry)

        while pending:
            done, _ = wait(list(pending), timeout=self._poll_interval, return_when=FIRST_COMPLETED)
            for future in done:
                device_id, _ = pending.pop(future)
                self._record(device_id, future, counts)
            self._expire(pending, started, now, counts)

        with self._lock:
            self._sweeps += 1
            self._failed_checks += counts["failed"]
            self._transitions[Liveness.OFFLINE] += counts["offline"]
            self._transitions[Liveness.ONLINE] += counts["online"]

        if counts["offline"] or counts["online"] or counts["failed"] or counts["skipped"]:
            logger.info("[HEARTBEAT] Sweep %s", counts)
        return counts

    def _submit(
        self, device_id: str, entry: LiveStateEntry, now: float, started: Dict[str, float]
    ) -> Future:
        def run() -> Optional[Liveness]:
            started[device_id] = time.monotonic()
            return self._check(device_id, entry, now)

        future = self._pool.submit(run)
        with self._lock:
            self._in_flight[device_id] = future
        future.add_done_callback(lambda f: self._release(device_id, f))
        return future

    def _release(self, device_id: str, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(device_id) is future:
                del self._in_flight[device_id]

    def _is_in_flight(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._in_flight

    def _record(self, device_id: str, future: Future, counts: Dict[str, int]) -> None:
        counts["checked"] += 1
        try:
            transition = future.result()
        except Exception as e:
            counts["failed"] += 1
            logger.error("[HEARTBEAT] Check failed device=%s: %s", device_id, e)
            return
        if transition is Liveness.OFFLINE:
            counts["offline"] += 1
        elif transition is Liveness.ONLINE:
            counts["online"] += 1

    def _expire(
        self,
        pending: Dict[Future, Tuple[str, LiveStateEntry]],
        started: Dict[str, float],
        now: float,
        counts: Dict[str, int],
    ) -> None:
        clock = time.monotonic()
        expired = [
            future for future, (device_id, _) in pending.items()
            if device_id in started and clock - started[device_id] > self._check_timeout
        ]
        for future in expired:
            device_id, _ = pending.pop(future)
            counts["checked"] += 1
            counts["failed"] += 1
            self._hung.add(future)
            logger.warning("[HEARTBEAT] Check timed out device=%s", device_id)

        self._hung = {f for f in self._hung if not f.done()}
        if len(self._hung) >= self._max_workers:
            self._replace_pool(pending, started, now)

    def _replace_pool(
        self,
        pending: Dict[Future, Tuple[str, LiveStateEntry]],
        started: Dict[str, float],
        now: float,
    ) -> None:
        """Every worker is held by a timed-out check: move queued checks to a fresh pool.

        The hung threads are left to finish on the old pool; their devices
        stay in flight and are skipped until they return.
        """
        logger.warning(
            "[HEARTBEAT] All %d check workers hung, replacing pool (%d checks queued)",
            self._max_workers, len(pending),
        )
        old_pool = self._pool
        self._pool = self._new_pool()
        self._hung = set()
        with self._lock:
            self._pool_replacements += 1

        for future, (device_id, entry) in list(pending.items()):
            if future.cancel():
                del pending[future]
                pending[self._submit(device_id, entry, now, started)] = (device_id, entry)
        old_pool.shutdown(wait=False)

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="heartbeat-check")

    def _check(self, device_id: str, entry: LiveStateEntry, now: float) -> Optional[Liveness]:
        age = now - entry.last_heartbeat
        if entry.state is Liveness.ONLINE and age > self._offline_threshold:
            target = Liveness.OFFLINE
        elif entry.state is Liveness.OFFLINE and age <= self._offline_threshold:
            target = Liveness.ONLINE
        else:
            return None

        device = self._devices.get_by_rack_id(device_id)
        if device is None:
            logger.warning("[HEARTBEAT] Tracked device no longer registered: %s", device_id)
            return None

        is_online = target is Liveness.ONLINE
        # Device row first: if it fails the state is unchanged and the next sweep retries.
        self._devices.apply_update(device.id, DeviceUpdate(is_online=is_online))
        self._live_state.set_state(device_id, target)

        last_seen = from_epoch(entry.last_heartbeat).isoformat()
        logger.info(
            "[HEARTBEAT] device=%s %s → %s (%.1fs since heartbeat)",
            device_id, entry.state.value, target.value, age,
        )

        reading = entry.reading or {}
        self._notifications.emit(
            DEVICE_STATUS,
            {
                "deviceId": device_id,
                "isOnline": is_online,
                "lastSeen": last_seen,
                "weight": reading.get("weight", device.last_weight),
                "status": reading.get("status", device.last_status),
                "ingredient": reading.get("ingredient"),
            },
        )

        alert_type = AlertType.ONLINE if is_online else AlertType.OFFLINE
        try:
            self._alerts.raise_alert(
                AlertSubject.for_device(device),
                alert_type,
                details={
                    "lastHeartbeat": last_seen,
                    "secondsSinceHeartbeat": round(age, 3),
                },
                status=target.value,
            )
        except PersistenceFailure as e:
            logger.error("[HEARTBEAT] %s alert not raised device=%s: %s", alert_type.value, device_id, e)
        return target

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {
                "sweeps": self._sweeps,
                "offline_transitions": self._transitions[Liveness.OFFLINE],
                "online_transitions": self._transitions[Liveness.ONLINE],
                "failed_checks": self._failed_checks,
                "in_flight": len(self._in_flight),
                "pool_replacements": self._pool_replacements,
            }
