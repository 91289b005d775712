from dataclasses import dataclass, field
from threading import Event
from typing import Dict, Iterable, List, Optional

from . import scenarios
from .classifier import Expectation, Outcome, classify, expected
from .errors import SetupFault
from .isolation import LEVELS, IsolationLevel
from .journal import Journal
from .schedule import Verdict


@dataclass
class Finding:
    scenario: str
    level: IsolationLevel
    expected: Expectation
    verdict: Optional[Verdict] = None
    outcome: Optional[Outcome] = None
    final: Dict[str, int] = field(default_factory=dict)  # 실행 후 커밋된 잔고
    fault: Optional[SetupFault] = None

    @property
    def ok(self) -> bool:
        return self.fault is None and self.expected.matches(self.verdict)

    def row(self) -> dict:
        error = self.verdict.error if self.verdict else None
        return {
            "scenario": self.scenario,
            "level": self.level.value,
            "outcome": self.outcome.value if self.outcome else f"fault: {self.fault}",
            "expected": str(self.expected),
            "conflict": error.kind.value if error else "",
            "sqlstate": error.sqlstate if error else "",
            "ok": self.ok,
        }


def run_scenario(store, name: str, level: IsolationLevel, cancel: Optional[Event] = None,
                 journal: Optional[Journal] = None) -> Finding:
    """픽스처를 초기화하고, 새 핸들 두 개로 시나리오 하나를 돌려 분류한다."""
    schedule = scenarios.get(name)
    store.reset()
    if journal is not None:
        journal.append({"event": "BEGIN", "scenario": name, "level": level.value})
    tx_a = store.begin(level, cancel)
    try:
        tx_b = store.begin(level, cancel)
    except BaseException:
        tx_a.rollback()
        raise
    verdict = schedule.run(tx_a, tx_b, cancel=cancel, journal=journal)
    return Finding(
        scenario=name,
        level=level,
        expected=expected(name, level),
        verdict=verdict,
        outcome=classify(verdict),
        final=store.balances(),
    )


def run_matrix(store, levels: Iterable[IsolationLevel] = LEVELS,
               names: Optional[Iterable[str]] = None, keep_going: bool = True,
               cancel: Optional[Event] = None, journal: Optional[Journal] = None) -> List[Finding]:
    """
    모든 수준 x 모든 시나리오.
    keep_going이면 설정 오류는 해당 Finding에 남기고 다음 조합을 계속 돌린다.
    """
    names = list(names) if names is not None else list(scenarios.SCENARIOS)
    findings = []
    for level in levels:
        for name in names:
            try:
                findings.append(run_scenario(store, name, level, cancel=cancel, journal=journal))
            except SetupFault as exc:
                if not keep_going:
                    raise
                if journal is not None:
                    journal.append({"event": "FAULT", "scenario": name, "level": level.value, "error": str(exc)})
                findings.append(Finding(name, level, expected(name, level), fault=exc))
    return findings
