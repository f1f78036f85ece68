"""Tests for epoch state helpers (no database)."""

from datetime import datetime, timedelta, timezone

from coremine.db.models import Epoch
from coremine.epochs.service import EpochState, describe_state, epoch_progress, format_time_left

START = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _epoch(active: bool = True) -> Epoch:
    return Epoch(id=1, start_time=START, end_time=START + timedelta(days=30), is_active=active)


class TestDescribeState:
    def test_none(self):
        assert describe_state(None, START) is EpochState.NO_ACTIVE_EPOCH

    def test_closed_epoch_counts_as_none(self):
        assert describe_state(_epoch(active=False), START) is EpochState.NO_ACTIVE_EPOCH

    def test_active(self):
        assert describe_state(_epoch(), START + timedelta(days=29, hours=23)) is EpochState.ACTIVE

    def test_ending_at_exact_end(self):
        assert describe_state(_epoch(), START + timedelta(days=30)) is EpochState.ENDING

    def test_naive_end_time(self):
        epoch = Epoch(id=1, start_time=START.replace(tzinfo=None), end_time=(START + timedelta(days=1)).replace(tzinfo=None), is_active=True)
        assert describe_state(epoch, START + timedelta(days=2)) is EpochState.ENDING


class TestProgress:
    def test_halfway(self):
        assert epoch_progress(_epoch(), START + timedelta(days=15)) == 50.0

    def test_clamped(self):
        assert epoch_progress(_epoch(), START - timedelta(days=1)) == 0.0
        assert epoch_progress(_epoch(), START + timedelta(days=45)) == 100.0


class TestTimeLeft:
    def test_format(self):
        now = START + timedelta(days=27, hours=20, minutes=15)
        assert format_time_left(_epoch(), now) == "2d 3h 45m"

    def test_expired(self):
        assert format_time_left(_epoch(), START + timedelta(days=31)) == "0d 0h 0m"
