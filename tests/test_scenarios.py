"""
Anomaly scenarios against the in-memory store, one class per isolation level.

The expected verdicts are the ones postgres documents for each level.
"""
import pytest

from isolation_anomalies import scenarios
from isolation_anomalies.errors import (
    CONCURRENT_UPDATE_MSG,
    RW_DEPENDENCIES_MSG,
    SERIALIZATION_FAILURE,
    ConflictKind,
)
from isolation_anomalies.fixture import ALICE, BOB
from isolation_anomalies.isolation import LEVELS, IsolationLevel

RC = IsolationLevel.READ_COMMITTED
RR = IsolationLevel.REPEATABLE_READ
SER = IsolationLevel.SERIALIZABLE


class TestReadCommitted:
    """Only committed data is read, but each statement sees the latest commit."""

    def test_no_dirty_read(self, begin):
        tx1, tx2 = begin(RC)
        assert scenarios.dirty_read(tx1, tx2).observed is False

    def test_non_repeatable_read_possible(self, begin):
        tx1, tx2 = begin(RC)
        verdict = scenarios.non_repeatable_read(tx1, tx2)
        assert verdict.observed is True
        assert (verdict.seen["a1"], verdict.seen["a2"]) == (100, 150)

    def test_phantom_read_possible(self, begin):
        tx1, tx2 = begin(RC)
        assert scenarios.phantom_read(tx1, tx2).observed is True

    def test_lost_update_possible(self, store, begin):
        tx1, tx2 = begin(RC)
        anomaly, err = scenarios.lost_update(tx1, tx2, first_delta=50, second_delta=100)
        assert err is None
        assert anomaly is True
        # Tx2's write (100 + 100) replaced Tx1's committed 150
        assert store.balances()[ALICE] == 200

    def test_write_skew_possible(self, store, begin):
        tx1, tx2 = begin(RC)
        anomaly, err = scenarios.write_skew(tx1, tx2)
        assert err is None
        assert anomaly is True
        assert store.balances() == {ALICE: 150, BOB: 150}


class TestRepeatableRead:
    """Snapshot isolation: the snapshot is fixed by the first statement."""

    def test_no_dirty_read(self, begin):
        tx1, tx2 = begin(RR)
        assert scenarios.dirty_read(tx1, tx2).observed is False

    def test_no_non_repeatable_read(self, begin):
        tx1, tx2 = begin(RR)
        verdict = scenarios.non_repeatable_read(tx1, tx2)
        assert verdict.observed is False
        assert verdict.seen["a2"] == 100

    def test_no_phantom_read(self, begin):
        tx1, tx2 = begin(RR)
        assert scenarios.phantom_read(tx1, tx2).observed is False

    def test_lost_update_caught_and_error_returned(self, store, begin):
        tx1, tx2 = begin(RR)
        anomaly, err = scenarios.lost_update(tx1, tx2)
        assert anomaly is False
        assert err.kind is ConflictKind.WRITE_WRITE
        assert err.sqlstate == SERIALIZATION_FAILURE
        assert err.message == CONCURRENT_UPDATE_MSG
        assert store.balances()[ALICE] == 150

    def test_write_skew_possible(self, begin):
        tx1, tx2 = begin(RR)
        anomaly, err = scenarios.write_skew(tx1, tx2)
        assert err is None
        assert anomaly is True


class TestSerializable:
    """Snapshot isolation plus rw-antidependency (SSI) detection."""

    def test_no_dirty_read(self, begin):
        tx1, tx2 = begin(SER)
        assert scenarios.dirty_read(tx1, tx2).observed is False

    def test_no_non_repeatable_read(self, begin):
        tx1, tx2 = begin(SER)
        assert scenarios.non_repeatable_read(tx1, tx2).observed is False

    def test_no_phantom_read(self, begin):
        tx1, tx2 = begin(SER)
        assert scenarios.phantom_read(tx1, tx2).observed is False

    def test_lost_update_caught_and_error_returned(self, begin):
        tx1, tx2 = begin(SER)
        anomaly, err = scenarios.lost_update(tx1, tx2)
        assert anomaly is False
        assert err.kind is ConflictKind.WRITE_WRITE
        assert err.message == CONCURRENT_UPDATE_MSG

    def test_write_skew_caught_and_error_returned(self, store, begin):
        tx1, tx2 = begin(SER)
        anomaly, err = scenarios.write_skew(tx1, tx2)
        assert anomaly is False
        assert err.kind is ConflictKind.READ_WRITE
        assert err.sqlstate == SERIALIZATION_FAILURE
        assert err.message == RW_DEPENDENCIES_MSG
        # only Tx1's write survived
        assert store.balances() == {ALICE: 100, BOB: 150}

    def test_write_skew_and_lost_update_report_different_conflicts(self, store):
        store.reset()
        _, lost = scenarios.lost_update(store.begin(SER), store.begin(SER))
        store.reset()
        _, skew = scenarios.write_skew(store.begin(SER), store.begin(SER))
        assert lost.kind is not skew.kind


@pytest.mark.parametrize("level", LEVELS, ids=lambda lv: lv.value)
@pytest.mark.parametrize("name", list(scenarios.SCENARIOS))
def test_both_handles_terminated(store, level, name):
    tx1, tx2 = store.begin(level), store.begin(level)
    scenarios.get(name).run(tx1, tx2)
    assert tx1.closed and tx2.closed
    assert store.locks.held == {}


@pytest.mark.parametrize("level", LEVELS, ids=lambda lv: lv.value)
@pytest.mark.parametrize("name", list(scenarios.SCENARIOS))
def test_same_verdict_on_every_rerun(store, level, name):
    verdicts = set()
    for _ in range(3):
        store.reset()
        verdict = scenarios.get(name).run(store.begin(level), store.begin(level))
        verdicts.add((verdict.observed, verdict.error.kind if verdict.error else None))
    assert len(verdicts) == 1


def test_dirty_read_never_commits_the_write(store, begin):
    tx1, tx2 = begin(RC)
    scenarios.dirty_read(tx1, tx2)
    assert store.balances() == {ALICE: 100, BOB: 100}


def test_lost_update_deltas_are_configurable(store, begin):
    tx1, tx2 = begin(RC)
    verdict = scenarios.lost_update(tx1, tx2, first_delta=1, second_delta=7)
    assert verdict.observed is True
    assert store.balances()[ALICE] == 107


def test_unknown_scenario():
    with pytest.raises(ValueError, match="unknown scenario"):
        scenarios.get("read-skew")
