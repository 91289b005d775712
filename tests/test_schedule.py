from threading import Event

import pytest

from isolation_anomalies.errors import Cancelled, ConflictError, EntityNotFound
from isolation_anomalies.fixture import ALICE, BOB, NEGATIVE
from isolation_anomalies.isolation import IsolationLevel
from isolation_anomalies.journal import Journal
from isolation_anomalies.schedule import A, B, Schedule, Step, Verdict, commit, read, scan, write

RC = IsolationLevel.READ_COMMITTED


class CancelAfterFirstStep(Journal):
    def __init__(self, cancel):
        super().__init__()
        self.cancel = cancel

    def append(self, record):
        super().append(record)
        if record["event"] == "STEP":
            self.cancel.set()


@pytest.mark.parametrize("kwargs", [
    dict(actor="C", op="read", key=ALICE),
    dict(actor=A, op="delete", key=ALICE),
    dict(actor=A, op="read"),
    dict(actor=A, op="scan"),
    dict(actor=A, op="write", key=ALICE),
])
def test_step_validation(kwargs):
    with pytest.raises(ValueError):
        Step(**kwargs)


def test_write_value_can_depend_on_earlier_reads(store):
    schedule = Schedule("double", [
        read(A, BOB, save_as="bob"),
        write(A, ALICE, lambda seen: seen["bob"] * 2),
        commit(A),
    ], verdict=lambda seen: False)
    schedule.run(store.begin(RC), store.begin(RC))
    assert store.balances()[ALICE] == 200


def test_scan_results_are_kept(store):
    schedule = Schedule("scan", [scan(B, NEGATIVE, save_as="rows")], verdict=lambda seen: bool(seen["rows"]))
    verdict = schedule.run(store.begin(RC), store.begin(RC))
    assert verdict == Verdict("scan", False, None, {"rows": []})


def test_verdict_unpacks_as_observed_and_error():
    observed, error = Verdict("x", True)
    assert observed is True and error is None


def test_cancel_before_start_still_rolls_back(store):
    cancel = Event()
    cancel.set()
    tx1, tx2 = store.begin(RC), store.begin(RC)
    schedule = Schedule("noop", [read(A, ALICE, save_as="a")], verdict=lambda seen: True)
    with pytest.raises(Cancelled):
        schedule.run(tx1, tx2, cancel=cancel)
    assert tx1.closed and tx2.closed


def test_cancel_mid_schedule_discards_pending_write(store):
    cancel = Event()
    tx1, tx2 = store.begin(RC), store.begin(RC)
    schedule = Schedule("cancelled", [
        write(A, ALICE, 1),
        commit(A),
    ], verdict=lambda seen: True)
    with pytest.raises(Cancelled):
        schedule.run(tx1, tx2, cancel=cancel, journal=CancelAfterFirstStep(cancel))
    assert tx1.closed and tx2.closed
    assert store.balances()[ALICE] == 100


def test_conflict_outside_allowed_steps_propagates(store):
    tx1, tx2 = store.begin(RC), store.begin(RC)
    schedule = Schedule("clash", [
        write(A, ALICE, 1),
        write(B, ALICE, 2),
    ], verdict=lambda seen: True)
    with pytest.raises(ConflictError):
        schedule.run(tx1, tx2)
    assert tx1.closed and tx2.closed


def test_conflict_at_allowed_step_becomes_the_verdict(store):
    tx1, tx2 = store.begin(RC), store.begin(RC)
    schedule = Schedule("clash", [
        write(A, ALICE, 1),
        write(B, ALICE, 2, may_conflict=True),
        commit(B),
    ], verdict=lambda seen: True)
    verdict = schedule.run(tx1, tx2)
    assert verdict.observed is False
    assert isinstance(verdict.error, ConflictError)
    assert tx1.closed and tx2.closed
    assert store.balances()[ALICE] == 100


def test_setup_fault_propagates_and_releases_handles(store):
    tx1, tx2 = store.begin(RC), store.begin(RC)
    schedule = Schedule("missing", [read(A, "Carol", save_as="c")], verdict=lambda seen: True)
    with pytest.raises(EntityNotFound):
        schedule.run(tx1, tx2)
    assert tx1.closed and tx2.closed


def test_journal_records_every_step(store):
    journal = Journal()
    schedule = Schedule("trace", [
        read(A, ALICE, save_as="a"),
        write(B, BOB, 5),
        commit(B),
    ], verdict=lambda seen: seen["a"] == 100)
    schedule.run(store.begin(RC), store.begin(RC), journal=journal)
    events = [(r["event"], r.get("actor"), r.get("op")) for r in journal.load()]
    assert events == [
        ("STEP", A, "read"),
        ("STEP", B, "write"),
        ("STEP", B, "commit"),
        ("VERDICT", None, None),
    ]
    assert journal.last_by_scenario("trace")["observed"] is True
