from typing import Dict, List, Optional


class RowLock:
    """
    종료될 때까지 한 트랜잭션이 쥐는 배타 행 락.
    - 대기열 없음: 두 번째 writer는 기다리지 않고 거절된다.
    """
    def __init__(self):
        self.holder: Optional[int] = None

    def acquire(self, xid: int) -> bool:
        if self.holder is not None and self.holder != xid:
            return False
        self.holder = xid
        return True

    def release(self, xid: int):
        assert self.holder == xid
        self.holder = None


class LockManager:
    """키별 행 락. 한 트랜잭션의 락은 한꺼번에 해제된다."""
    def __init__(self):
        self.locks: Dict[str, RowLock] = {}
        self.held: Dict[int, List[str]] = {}  # xid -> 키 목록

    def _get(self, key: str) -> RowLock:
        if key not in self.locks:
            self.locks[key] = RowLock()
        return self.locks[key]

    def try_acquire(self, key: str, xid: int) -> bool:
        lk = self._get(key)
        if lk.holder == xid:
            return True
        if not lk.acquire(xid):
            return False
        self.held.setdefault(xid, []).append(key)
        return True

    def release_all(self, xid: int):
        for key in self.held.pop(xid, []):
            self.locks[key].release(xid)
