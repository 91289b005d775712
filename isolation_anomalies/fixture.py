from dataclasses import dataclass
from typing import Dict

ALICE = "Alice"
BOB = "Bob"

# 모든 시나리오의 시작 상태
SEED: Dict[str, int] = {ALICE: 100, BOB: 100}


@dataclass
class Balance:
    name: str
    value: int


@dataclass(frozen=True)
class ValueBelow:
    """
    범위 서술 'value < threshold'.
    - where(): postgres 스토어용 SQL 조각 + 파라미터
    - 호출하면 인메모리 스토어용으로 파이썬에서 값을 평가
    """
    threshold: int

    def where(self):
        return "value < %s", (self.threshold,)

    def __call__(self, value: int) -> bool:
        return value < self.threshold

    def __str__(self):
        return f"value < {self.threshold}"


NEGATIVE = ValueBelow(0)
