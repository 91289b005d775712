"""
두 트랜잭션 A, B 위의 이상 현상 스케줄 다섯 가지.

각각 Schedule(데이터) 하나와 열린 핸들 두 개를 받는 얇은 함수로 되어 있다.
모두 초기 픽스처(Alice=100, Bob=100)에서 시작한다.
"""
from threading import Event
from typing import Dict, Optional

from .fixture import ALICE, BOB, NEGATIVE
from .journal import Journal
from .schedule import A, B, Schedule, Verdict, commit, read, scan, write

DIRTY_READ = "dirty-read"
NON_REPEATABLE_READ = "non-repeatable-read"
PHANTOM_READ = "phantom-read"
LOST_UPDATE = "lost-update"
WRITE_SKEW = "write-skew"

UNCOMMITTED_VALUE = 150


def dirty_read_schedule() -> Schedule:
    # A의 쓰기는 커밋되지 않는다. 끝나면 두 핸들 모두 rollback
    return Schedule(
        DIRTY_READ,
        [
            write(A, ALICE, UNCOMMITTED_VALUE),
            read(B, ALICE, save_as="b"),
        ],
        verdict=lambda seen: seen["b"] == UNCOMMITTED_VALUE,
        description="B reads Alice while A's write to Alice is uncommitted",
    )


def non_repeatable_read_schedule() -> Schedule:
    return Schedule(
        NON_REPEATABLE_READ,
        [
            read(A, ALICE, save_as="a1"),
            write(B, ALICE, 150),
            commit(B),  # A의 두 읽기 사이
            read(A, ALICE, save_as="a2"),
            commit(A),
        ],
        verdict=lambda seen: seen["a1"] != seen["a2"],
        description="A reads Alice twice around B's committed update",
    )


def phantom_read_schedule() -> Schedule:
    return Schedule(
        PHANTOM_READ,
        [
            scan(A, NEGATIVE, save_as="n1"),
            write(B, ALICE, -100),
            commit(B),
            scan(A, NEGATIVE, save_as="n2"),
            commit(A),
        ],
        verdict=lambda seen: len(seen["n1"]) == 0 and len(seen["n2"]) > 0,
        description=f"A evaluates '{NEGATIVE}' twice around B moving Alice into the range",
    )


def lost_update_schedule(first_delta: int = 50, second_delta: int = 100) -> Schedule:
    """
    둘 다 쓰기 전에 Alice를 읽는다. A가 먼저 커밋하고,
    B는 오래된 읽기 값으로 쓴다. B의 write나 commit은 스토어가 거절할 수 있다.
    """
    return Schedule(
        LOST_UPDATE,
        [
            read(A, ALICE, save_as="a"),
            read(B, ALICE, save_as="b"),
            write(A, ALICE, lambda seen: seen["a"] + first_delta),
            commit(A),
            write(B, ALICE, lambda seen: seen["b"] + second_delta, may_conflict=True),
            commit(B, may_conflict=True),
        ],
        # 끝까지 왔다면 B가 A의 커밋된 갱신을 덮어쓴 것
        verdict=lambda seen: True,
        description="A and B both increment Alice from the same read",
    )


def write_skew_schedule(delta: int = 50) -> Schedule:
    """
    서로 다른 행: A는 Alice를 읽고 Bob을 쓰고, B는 Bob을 읽고 Alice를 쓴다.
    같은 행을 두 번 쓰지 않으므로 rw 반의존성 검사만이 B를 거절할 수 있다.
    """
    return Schedule(
        WRITE_SKEW,
        [
            read(A, ALICE, save_as="a"),
            read(B, BOB, save_as="b"),
            write(A, BOB, lambda seen: seen["a"] + delta),
            commit(A),
            write(B, ALICE, lambda seen: seen["b"] + delta, may_conflict=True),
            commit(B, may_conflict=True),
        ],
        verdict=lambda seen: True,
        description="A writes Bob from Alice, B writes Alice from a stale Bob",
    )


def dirty_read(tx_a, tx_b, cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> Verdict:
    return dirty_read_schedule().run(tx_a, tx_b, cancel, journal)


def non_repeatable_read(tx_a, tx_b, cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> Verdict:
    return non_repeatable_read_schedule().run(tx_a, tx_b, cancel, journal)


def phantom_read(tx_a, tx_b, cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> Verdict:
    return phantom_read_schedule().run(tx_a, tx_b, cancel, journal)


def lost_update(tx_a, tx_b, first_delta: int = 50, second_delta: int = 100,
                cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> Verdict:
    return lost_update_schedule(first_delta, second_delta).run(tx_a, tx_b, cancel, journal)


def write_skew(tx_a, tx_b, delta: int = 50,
               cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> Verdict:
    return write_skew_schedule(delta).run(tx_a, tx_b, cancel, journal)


SCENARIOS: Dict[str, Schedule] = {
    s.name: s for s in (
        dirty_read_schedule(),
        non_repeatable_read_schedule(),
        phantom_read_schedule(),
        lost_update_schedule(),
        write_skew_schedule(),
    )
}


def get(name: str) -> Schedule:
    try:
        return SCENARIOS[name]
    except KeyError:
        raise ValueError(f"unknown scenario {name!r}, expected one of {', '.join(SCENARIOS)}") from None
