from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .errors import ConflictKind
from .isolation import IsolationLevel
from .scenarios import DIRTY_READ, LOST_UPDATE, NON_REPEATABLE_READ, PHANTOM_READ, WRITE_SKEW
from .schedule import Verdict


class Outcome(Enum):
    OBSERVED = "anomaly observed"
    PREVENTED = "anomaly prevented"
    PREVENTED_WITH_ERROR = "prevented-with-error"


def classify(verdict: Verdict) -> Outcome:
    if verdict.error is not None:
        return Outcome.PREVENTED_WITH_ERROR
    if verdict.observed:
        return Outcome.OBSERVED
    return Outcome.PREVENTED


@dataclass(frozen=True)
class Expectation:
    outcome: Outcome
    conflict: Optional[ConflictKind] = None

    def matches(self, verdict: Verdict) -> bool:
        if classify(verdict) is not self.outcome:
            return False
        if self.conflict is not None:
            return verdict.error.kind is self.conflict
        return True

    def __str__(self):
        if self.conflict is not None:
            return f"{self.outcome.value} ({self.conflict.value})"
        return self.outcome.value


_observed = Expectation(Outcome.OBSERVED)
_prevented = Expectation(Outcome.PREVENTED)
_write_write = Expectation(Outcome.PREVENTED_WITH_ERROR, ConflictKind.WRITE_WRITE)
_read_write = Expectation(Outcome.PREVENTED_WITH_ERROR, ConflictKind.READ_WRITE)

# 수준별 postgres 문서상의 동작
EXPECTED: Dict[IsolationLevel, Dict[str, Expectation]] = {
    IsolationLevel.READ_COMMITTED: {
        DIRTY_READ: _prevented,
        NON_REPEATABLE_READ: _observed,
        PHANTOM_READ: _observed,
        LOST_UPDATE: _observed,
        WRITE_SKEW: _observed,
    },
    IsolationLevel.REPEATABLE_READ: {
        DIRTY_READ: _prevented,
        NON_REPEATABLE_READ: _prevented,
        PHANTOM_READ: _prevented,
        LOST_UPDATE: _write_write,
        # 스냅샷 격리는 rw 반의존성을 감지하지 않는다
        WRITE_SKEW: _observed,
    },
    IsolationLevel.SERIALIZABLE: {
        DIRTY_READ: _prevented,
        NON_REPEATABLE_READ: _prevented,
        PHANTOM_READ: _prevented,
        LOST_UPDATE: _write_write,
        WRITE_SKEW: _read_write,
    },
}


def expected(scenario: str, level: IsolationLevel) -> Expectation:
    return EXPECTED[level][scenario]
