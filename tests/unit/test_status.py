"""
Unit tests for the sync status signal.
"""

from trunk.sync import SyncState, SyncStatusTracker


class TestSyncStatusTracker:
    """Tests for SyncStatusTracker."""

    def test_initially_synced(self):
        assert SyncStatusTracker().state is SyncState.SYNCED

    def test_state_priority(self):
        tracker = SyncStatusTracker()

        tracker.pending_count = 2
        assert tracker.state is SyncState.PENDING_UPLOAD

        tracker.offline = True
        assert tracker.state is SyncState.OFFLINE

        tracker.syncing = True
        assert tracker.state is SyncState.SYNCING

    def test_auth_required_is_offline(self):
        tracker = SyncStatusTracker()
        tracker.auth_required = True
        assert tracker.state is SyncState.OFFLINE
        assert tracker.snapshot().auth_required

    def test_subscribe_gets_current_then_changes(self):
        tracker = SyncStatusTracker()
        seen = []

        unsubscribe = tracker.subscribe(lambda status: seen.append(status.state))
        tracker.pending_count = 1
        tracker.notify()
        unsubscribe()
        tracker.pending_count = 0
        tracker.notify()

        assert seen == [SyncState.SYNCED, SyncState.PENDING_UPLOAD]

    def test_failing_listener_does_not_block_others(self):
        tracker = SyncStatusTracker()
        seen = []

        def broken(status):
            if seen:
                raise RuntimeError("listener bug")

        tracker.subscribe(broken)
        tracker.subscribe(lambda status: seen.append(status))
        tracker.notify()

        assert len(seen) == 2

    def test_failure_tracking(self):
        tracker = SyncStatusTracker()

        tracker.record_failure("down", "REMOTE_UNAVAILABLE")
        tracker.record_failure("still down", "REMOTE_UNAVAILABLE")
        status = tracker.snapshot()

        assert status.state is SyncState.OFFLINE
        assert status.consecutive_failures == 2
        assert status.last_error == "still down"
        assert status.last_error_code == "REMOTE_UNAVAILABLE"
        assert status.last_failure_at is not None

        tracker.record_success()
        status = tracker.snapshot()

        assert status.state is SyncState.SYNCED
        assert status.consecutive_failures == 0
        assert status.last_error is None
