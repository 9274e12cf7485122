"""Heartbeat monitor tests. Sweeps are driven by hand with explicit timestamps."""

import threading
import time

import pytest

from rack_ingest.heartbeat import HeartbeatMonitor
from rack_ingest.live_state import Liveness
from rack_ingest.notifications import ALERT, DEVICE_STATUS
from rack_ingest.persistence.schema import alerts as alerts_table

from .conftest import RACK_ID, count_rows

THRESHOLD = 30.0
T0 = 1_760_000_000.0


@pytest.fixture
def monitor(device_repo, live_state, deduplicator, notifications, clock):
    m = HeartbeatMonitor(
        device_repo,
        live_state,
        deduplicator,
        notifications,
        offline_threshold=THRESHOLD,
        sweep_interval=3600,
        check_timeout=1.0,
        max_workers=2,
        clock=clock,
    )
    yield m
    m.stop()


@pytest.fixture
def tracked(device, live_state):
    live_state.touch(RACK_ID, T0, {"weight": 420.0, "status": "OK", "ingredient": "Flour"})
    return device


# =============================================================================
# OFFLINE DETECTION
# =============================================================================

class TestOfflineDetection:
    def test_within_threshold_stays_online(self, monitor, tracked, live_state):
        counts = monitor.sweep(now=T0 + THRESHOLD)

        assert counts == {"checked": 1, "offline": 0, "online": 0, "failed": 0, "skipped": 0}
        assert live_state.get(RACK_ID).state is Liveness.ONLINE

    def test_just_past_threshold_goes_offline(
        self, engine, monitor, tracked, live_state, device_repo, subscriber
    ):
        counts = monitor.sweep(now=T0 + THRESHOLD + 0.001)

        assert counts["offline"] == 1
        assert live_state.get(RACK_ID).state is Liveness.OFFLINE
        assert device_repo.get_by_rack_id(RACK_ID).is_online is False
        assert count_rows(engine, alerts_table, type="OFFLINE") == 1

        frames = dict(subscriber.drain())
        assert frames[DEVICE_STATUS]["isOnline"] is False
        assert frames[DEVICE_STATUS]["weight"] == 420.0
        assert frames[ALERT]["status"] == "OFFLINE"
        assert frames[ALERT]["slotId"] is None

    def test_offline_raised_once(self, engine, monitor, tracked):
        monitor.sweep(now=T0 + THRESHOLD + 1)
        second = monitor.sweep(now=T0 + THRESHOLD + 11)

        assert second["offline"] == 0
        assert count_rows(engine, alerts_table, type="OFFLINE") == 1
        assert monitor.metrics["offline_transitions"] == 1
        assert monitor.metrics["sweeps"] == 2

    def test_alert_details(self, alert_repo, monitor, tracked):
        monitor.sweep(now=T0 + 45)

        (alert,) = alert_repo.list_open()
        assert alert.slot_id is None
        assert alert.details["secondsSinceHeartbeat"] == 45.0

    def test_uses_clock_by_default(self, monitor, tracked, clock):
        clock.now = T0 + THRESHOLD + 5

        assert monitor.sweep()["offline"] == 1


# =============================================================================
# RECOVERY
# =============================================================================

class TestRecovery:
    def test_recovery_seen_at_next_sweep(self, engine, monitor, tracked, live_state, device_repo):
        monitor.sweep(now=T0 + 60)
        live_state.touch(RACK_ID, T0 + 65)

        # touch alone keeps the OFFLINE state
        assert live_state.get(RACK_ID).state is Liveness.OFFLINE

        counts = monitor.sweep(now=T0 + 70)

        assert counts["online"] == 1
        assert live_state.get(RACK_ID).state is Liveness.ONLINE
        assert device_repo.get_by_rack_id(RACK_ID).is_online is True
        assert count_rows(engine, alerts_table, type="ONLINE") == 1

    def test_flapping_keeps_one_open_alert_per_type(self, engine, monitor, tracked, live_state):
        monitor.sweep(now=T0 + 60)
        live_state.touch(RACK_ID, T0 + 61)
        monitor.sweep(now=T0 + 62)
        monitor.sweep(now=T0 + 200)

        assert monitor.metrics["offline_transitions"] == 2
        assert count_rows(engine, alerts_table, type="OFFLINE") == 1
        assert count_rows(engine, alerts_table, type="ONLINE") == 1


# =============================================================================
# FAILURES
# =============================================================================

class TestFailedChecks:
    def test_failed_device_update_retried_next_sweep(
        self, monitor, tracked, live_state, device_repo, monkeypatch
    ):
        original = device_repo.apply_update

        def broken(device_id, change):
            raise RuntimeError("db down")

        monkeypatch.setattr(device_repo, "apply_update", broken)
        counts = monitor.sweep(now=T0 + 60)

        assert counts["failed"] == 1
        assert live_state.get(RACK_ID).state is Liveness.ONLINE

        monkeypatch.setattr(device_repo, "apply_update", original)
        assert monitor.sweep(now=T0 + 70)["offline"] == 1

    def test_stuck_check_does_not_stall_sweep(self, monitor, tracked, device_repo, monkeypatch):
        release = threading.Event()

        def stuck(rack_id):
            release.wait(5)
            return None

        monkeypatch.setattr(device_repo, "get_by_rack_id", stuck)
        try:
            counts = monitor.sweep(now=T0 + 60)
        finally:
            release.set()

        assert counts["failed"] == 1
        assert monitor.metrics["failed_checks"] == 1

    def test_stuck_checks_do_not_starve_healthy_device(
        self, device, device_repo, live_state, deduplicator, notifications, monkeypatch
    ):
        # Both workers get stuck before the stale healthy rack is picked up.
        live_state.touch("STUCK-1", T0)
        live_state.touch("STUCK-2", T0)
        live_state.touch(RACK_ID, T0)

        release = threading.Event()
        lookup = device_repo.get_by_rack_id

        def slow_lookup(rack_id):
            if rack_id.startswith("STUCK"):
                release.wait(10)
                return None
            return lookup(rack_id)

        monkeypatch.setattr(device_repo, "get_by_rack_id", slow_lookup)
        m = HeartbeatMonitor(
            device_repo,
            live_state,
            deduplicator,
            notifications,
            offline_threshold=THRESHOLD,
            sweep_interval=3600,
            check_timeout=0.3,
            max_workers=2,
        )
        try:
            first = m.sweep(now=T0 + 60)

            assert first == {"checked": 3, "offline": 1, "online": 0, "failed": 2, "skipped": 0}
            assert live_state.get(RACK_ID).state is Liveness.OFFLINE
            assert device_repo.get_by_rack_id(RACK_ID).is_online is False
            assert m.metrics["pool_replacements"] == 1

            # Still hung: not resubmitted, not counted as failed again.
            second = m.sweep(now=T0 + 70)

            assert second["skipped"] == 2
            assert second["failed"] == 0
            assert second["checked"] == 1
        finally:
            release.set()
            m.stop()

    def test_unregistered_device_skipped(self, monitor, device, live_state):
        live_state.touch("RACK-GONE", T0)

        counts = monitor.sweep(now=T0 + 60)

        assert counts == {"checked": 1, "offline": 0, "online": 0, "failed": 0, "skipped": 0}

    def test_live_state_unavailable(self, monitor, live_state, monkeypatch):
        def broken():
            raise ConnectionError("redis down")

        monkeypatch.setattr(live_state, "items", broken)

        assert monitor.sweep(now=T0)["checked"] == 0


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestLifecycle:
    def test_background_thread_sweeps(self, device_repo, live_state, deduplicator, notifications, tracked):
        m = HeartbeatMonitor(
            device_repo,
            live_state,
            deduplicator,
            notifications,
            offline_threshold=THRESHOLD,
            sweep_interval=0.05,
            clock=lambda: T0 + 120,
        )
        m.start()
        try:
            for _ in range(100):
                if live_state.get(RACK_ID).state is Liveness.OFFLINE:
                    break
                time.sleep(0.05)
        finally:
            m.stop()

        assert live_state.get(RACK_ID).state is Liveness.OFFLINE
        assert m.metrics["sweeps"] >= 1
