from enum import Enum
from typing import Optional


class HarnessError(Exception):
    pass


class SetupFault(HarnessError):
    """측정 중인 이상 현상과 무관한 픽스처/스토어 오류. 실행을 중단시킨다."""


class EntityNotFound(SetupFault):
    def __init__(self, name: str):
        super().__init__(f"balance {name!r} not found (was the fixture seeded?)")
        self.name = name


class StoreError(SetupFault):
    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate


class Cancelled(HarnessError):
    pass


class ConflictKind(Enum):
    WRITE_WRITE = "write-write"
    READ_WRITE = "read-write"
    LOCK_NOT_AVAILABLE = "lock-not-available"
    DEADLOCK = "deadlock"


SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
LOCK_NOT_AVAILABLE = "55P03"
IN_FAILED_TRANSACTION = "25P02"
QUERY_CANCELED = "57014"

CONCURRENT_UPDATE_MSG = "could not serialize access due to concurrent update"
RW_DEPENDENCIES_MSG = "could not serialize access due to read/write dependencies among transactions"


class ConflictError(HarnessError):
    """
    스토어 자체 동시성 제어가 낸 오류.
    - kind: write-write 충돌(lost update)과 rw 반의존성 실패(write skew)를 구분
    - sqlstate/message 는 스토어가 준 그대로
    """
    def __init__(self, kind: ConflictKind, sqlstate: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.sqlstate = sqlstate
        self.message = message

    @classmethod
    def from_sqlstate(cls, sqlstate: str, message: str) -> Optional["ConflictError"]:
        """postgres SQLSTATE를 충돌로 매핑. 충돌이 아니면 None."""
        if sqlstate == SERIALIZATION_FAILURE:
            if "read/write dependencies" in message:
                return cls(ConflictKind.READ_WRITE, sqlstate, message)
            return cls(ConflictKind.WRITE_WRITE, sqlstate, message)
        if sqlstate == LOCK_NOT_AVAILABLE:
            return cls(ConflictKind.LOCK_NOT_AVAILABLE, sqlstate, message)
        if sqlstate == DEADLOCK_DETECTED:
            return cls(ConflictKind.DEADLOCK, sqlstate, message)
        return None

    def __repr__(self):
        return f"ConflictError({self.kind.value}, {self.sqlstate}, {self.message!r})"
