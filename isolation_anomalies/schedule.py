from contextlib import ExitStack
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import Cancelled, ConflictError
from .fixture import ValueBelow
from .journal import Journal

A = "A"
B = "B"
ACTORS = (A, B)

READ = "read"
SCAN = "scan"
WRITE = "write"
COMMIT = "commit"

Seen = Dict[str, Any]


@dataclass
class Step:
    """
    한 액터의 연산 하나.
    - value: 정수, 또는 지금까지 본 값으로 계산하는 함수
      (오래된 읽기 값으로 쓰는 경우)
    - save_as: read/scan 결과를 저장할 이름
    - may_conflict: 여기서 난 ConflictError는 전파하지 않고 판정으로 끝낸다
    """
    actor: str
    op: str
    key: Optional[str] = None
    value: Union[int, Callable[[Seen], int], None] = None
    predicate: Optional[ValueBelow] = None
    save_as: Optional[str] = None
    may_conflict: bool = False

    def __post_init__(self):
        if self.actor not in ACTORS:
            raise ValueError(f"actor must be 'A' or 'B', got {self.actor!r}")
        if self.op not in (READ, SCAN, WRITE, COMMIT):
            raise ValueError(f"unknown op {self.op!r}")
        if self.op in (READ, WRITE) and self.key is None:
            raise ValueError(f"{self.op} needs a key")
        if self.op == SCAN and self.predicate is None:
            raise ValueError("scan needs a predicate")
        if self.op == WRITE and self.value is None:
            raise ValueError("write needs a value")

    def resolve_value(self, seen: Seen) -> int:
        if callable(self.value):
            return self.value(seen)
        return self.value

    def apply(self, handle, seen: Seen) -> Any:
        if self.op == READ:
            return handle.read(self.key).value
        if self.op == SCAN:
            return handle.scan(self.predicate)
        if self.op == WRITE:
            value = self.resolve_value(seen)
            handle.write(self.key, value)
            return value
        handle.commit()
        return None

    def describe(self) -> dict:
        out = {"actor": self.actor, "op": self.op}
        if self.key is not None:
            out["key"] = self.key
        if self.predicate is not None:
            out["predicate"] = str(self.predicate)
        return out


def read(actor: str, key: str, save_as: str) -> Step:
    return Step(actor, READ, key=key, save_as=save_as)


def scan(actor: str, predicate: ValueBelow, save_as: str) -> Step:
    return Step(actor, SCAN, predicate=predicate, save_as=save_as)


def write(actor: str, key: str, value, may_conflict: bool = False) -> Step:
    return Step(actor, WRITE, key=key, value=value, may_conflict=may_conflict)


def commit(actor: str, may_conflict: bool = False) -> Step:
    return Step(actor, COMMIT, may_conflict=may_conflict)


@dataclass
class Verdict:
    scenario: str
    observed: bool
    error: Optional[ConflictError] = None
    seen: Seen = field(default_factory=dict)

    def __iter__(self):
        # (observed, error)로 언패킹
        return iter((self.observed, self.error))


def _result_for_log(result: Any) -> Any:
    if isinstance(result, list):
        return [f"{b.name}={b.value}" for b in result]
    return result


@dataclass
class Schedule:
    """
    두 트랜잭션의 고정된 인터리빙. 리스트 순서대로 실행한다.

    - 이상 현상이 기대는 선후 관계(A의 두 읽기 사이의 B commit 등)는 위치로 표현된다
    - 첫 단계 전에 두 핸들의 rollback을 등록한다. commit 뒤 rollback은 no-op이므로
      어떤 경로로 끝나든(판정, 충돌, 설정 오류, 취소) 두 핸들 모두 종료된다
    - cancel은 단계 사이에서, 그리고 각 핸들이 문장마다 다시 확인한다
    """
    name: str
    steps: List[Step]
    verdict: Callable[[Seen], bool]
    description: str = ""

    def run(self, tx_a, tx_b, cancel: Optional[Event] = None,
            journal: Optional[Journal] = None) -> Verdict:
        handles = {A: tx_a, B: tx_b}
        seen: Seen = {}
        with ExitStack() as stack:
            stack.callback(tx_a.rollback)
            stack.callback(tx_b.rollback)
            for step in self.steps:
                if cancel is not None and cancel.is_set():
                    raise Cancelled(f"{self.name} cancelled before {step.actor} {step.op}")
                try:
                    result = step.apply(handles[step.actor], seen)
                except ConflictError as exc:
                    if journal is not None:
                        journal.append({
                            "event": "CONFLICT", "scenario": self.name, **step.describe(),
                            "kind": exc.kind.value, "sqlstate": exc.sqlstate, "message": exc.message,
                        })
                    if not step.may_conflict:
                        raise
                    return self._finish(Verdict(self.name, False, exc, seen), journal)
                if step.save_as:
                    seen[step.save_as] = result
                if journal is not None:
                    record = {"event": "STEP", "scenario": self.name, **step.describe()}
                    if step.op != COMMIT:
                        record["result"] = _result_for_log(result)
                    journal.append(record)
            return self._finish(Verdict(self.name, bool(self.verdict(seen)), None, seen), journal)

    def _finish(self, verdict: Verdict, journal: Optional[Journal]) -> Verdict:
        if journal is not None:
            journal.append({
                "event": "VERDICT", "scenario": self.name, "observed": verdict.observed,
                "conflict": verdict.error.kind.value if verdict.error else None,
            })
        return verdict
