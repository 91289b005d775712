from threading import Event, Lock
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import (
    CONCURRENT_UPDATE_MSG,
    IN_FAILED_TRANSACTION,
    LOCK_NOT_AVAILABLE,
    RW_DEPENDENCIES_MSG,
    SERIALIZATION_FAILURE,
    Cancelled,
    ConflictError,
    ConflictKind,
    EntityNotFound,
    StoreError,
)
from .fixture import SEED, Balance
from .isolation import IsolationLevel
from .locks import LockManager

# 스캔이 남기는 SIREAD 발자국: 릴레이션 전체를 읽었다는 표시
RELATION = "*"

ACTIVE = "active"
FAILED = "failed"  # 오류 발생, rollback 전까지 락은 계속 보유
COMMITTED = "committed"
ABORTED = "aborted"


class MVCCStore:
    """
    세 격리 수준에서 postgres처럼 동작하는 인메모리 잔고 스토어.
    DB 서버 없이 시나리오를 돌리기 위한 용도.

    - 버전 모델: key -> [(start_ts, end_ts, value)], 현재 버전은 end_ts가 None
    - 쓰기는 commit 전까지 트랜잭션의 write set에만 기록(지연 쓰기)
    - READ COMMITTED: 문장마다 최신 커밋 버전을 읽는다
    - REPEATABLE READ: 첫 문장에서 스냅샷 고정, 스냅샷 이후 커밋된 행을
      쓰려 하면 거절(first updater wins)
    - SERIALIZABLE: 위에 더해 SIREAD 발자국과 rw-edge를 기록하고,
      위험 구조(pivot)를 완성하는 현재 트랜잭션을 abort
    - 행 락은 배타적. 두 트랜잭션을 한 흐름에서 돌리므로 두 번째 writer는
      기다리는 대신 55P03으로 거절된다
    """

    def __init__(self):
        self.data: Dict[str, List[Tuple[int, Optional[int], int]]] = {}
        self._next_tid = 1
        self._lock = Lock()  # _next_tid 보호용
        self.locks = LockManager()
        self.sireads: Dict[str, Set[int]] = {}  # key -> 읽은 xid 집합
        self.rw_edges: Set[Tuple[int, int]] = set()  # (reader xid, writer xid)
        self.txns: Dict[int, "MVCCTransaction"] = {}

    def _alloc_tid(self) -> int:
        # 전역 타임스탬프 발급 (단조 증가)
        with self._lock:
            tid = self._next_tid
            self._next_tid += 1
            return tid

    def _now_ts(self) -> int:
        return self._next_tid

    # ---------- 픽스처 ----------

    def setup(self) -> None:
        # 만들 것이 없다 (암묵적인 릴레이션 하나)
        pass

    def reset(self, seed: Dict[str, int] = SEED) -> None:
        self.data = {}
        self.locks = LockManager()
        self.sireads = {}
        self.rw_edges = set()
        self.txns = {}
        self._write_commit(dict(seed), self._alloc_tid())

    def balances(self) -> Dict[str, int]:
        now = self._now_ts()
        out = {}
        for key in sorted(self.data):
            value = self._read_version(key, now)
            if value is not None:
                out[key] = value
        return out

    def begin(self, level: IsolationLevel, cancel: Optional[Event] = None) -> "MVCCTransaction":
        if not isinstance(level, IsolationLevel):
            raise TypeError(f"expected IsolationLevel, got {level!r}")
        txn = MVCCTransaction(self, self._alloc_tid(), level, cancel)
        self.txns[txn.xid] = txn
        return txn

    # ---------- 버전 ----------

    def _read_version(self, key: str, ts: int) -> Optional[int]:
        """ts 시점에서 볼 수 있는 key의 최신 버전 (start <= ts < end)."""
        cand = None
        for s, e, v in self.data.get(key, []):
            if s <= ts and (e is None or e > ts):
                if cand is None or s > cand[0]:
                    cand = (s, e, v)
        return cand[2] if cand else None

    def _latest_commit_ts(self, key: str) -> Optional[int]:
        for s, e, _ in self.data.get(key, []):
            if e is None:
                return s
        return None

    def _write_commit(self, write_set: Dict[str, int], commit_ts: int) -> None:
        for key, value in write_set.items():
            versions = self.data.setdefault(key, [])
            # 열린 최신 버전을 닫고
            for i in range(len(versions) - 1, -1, -1):
                s, e, v = versions[i]
                if e is None:
                    versions[i] = (s, commit_ts, v)
                    break
            # 새 버전을 연다
            versions.append((commit_ts, None, value))

    # ---------- SSI ----------

    def _live(self, txn: "MVCCTransaction") -> bool:
        return txn.status in (ACTIVE, COMMITTED)

    def _overlap(self, t1: "MVCCTransaction", t2: "MVCCTransaction") -> bool:
        """두 트랜잭션의 [snapshot, commit_ts 또는 +inf) 구간이 겹치는지."""
        if t1.snapshot is None or t2.snapshot is None:
            return False
        end1 = t1.commit_ts if t1.commit_ts is not None else float("inf")
        end2 = t2.commit_ts if t2.commit_ts is not None else float("inf")
        return not (end1 < t2.snapshot or end2 < t1.snapshot)

    def _mark_read(self, reader: "MVCCTransaction", key: str) -> None:
        """
        SIREAD 발자국을 남기고,
        reader의 스냅샷이 못 보는 버전을 쓴 동시 writer마다 reader -> writer 간선 추가.
        """
        self.sireads.setdefault(key, set()).add(reader.xid)
        for writer in self.txns.values():
            if writer is reader or not self._live(writer):
                continue
            wrote = bool(writer.write_set) if key == RELATION else key in writer.write_set
            if not wrote:
                continue
            invisible = writer.status == ACTIVE or writer.commit_ts > reader.snapshot
            if invisible and self._overlap(reader, writer):
                self.rw_edges.add((reader.xid, writer.xid))

    def _mark_write(self, writer: "MVCCTransaction", key: str) -> None:
        readers = self.sireads.get(key, set()) | self.sireads.get(RELATION, set())
        for xid in readers:
            if xid == writer.xid:
                continue
            reader = self.txns[xid]
            if self._live(reader) and self._overlap(reader, writer):
                self.rw_edges.add((xid, writer.xid))

    def _has_dangerous_structure(self, txn: "MVCCTransaction") -> bool:
        """
        위험 구조 감지(간이):
        - txn과 그 이웃 중에 들어오는 rw-edge와 나가는 rw-edge를 모두 가진
          살아있는 pivot이 있으면 True
        """
        edges = [
            (r, w) for (r, w) in self.rw_edges
            if self._live(self.txns[r]) and self._live(self.txns[w])
        ]
        involved = {txn.xid}
        involved.update(w for r, w in edges if r == txn.xid)
        involved.update(r for r, w in edges if w == txn.xid)
        for pivot in involved:
            incoming = any(w == pivot for _, w in edges)
            outgoing = any(r == pivot for r, _ in edges)
            if incoming and outgoing:
                return True
        return False


class MVCCTransaction:
    """
    MVCCStore 트랜잭션 핸들.
    - read()/scan()/write(): 시나리오가 쓰는 스토어 접근 연산
    - cancel 이벤트는 매 문장 시작 때 확인한다 (rollback 제외)
    - rollback()은 종료 후엔 아무 일도 하지 않으므로 항상 해제 동작으로 등록할 수 있다
    """

    def __init__(self, store: MVCCStore, xid: int, level: IsolationLevel,
                 cancel: Optional[Event] = None):
        self.store = store
        self.xid = xid
        self.level = level
        self.cancel = cancel
        self.snapshot: Optional[int] = None  # 첫 문장에서 정해진다
        self.commit_ts: Optional[int] = None
        self.write_set: Dict[str, int] = {}
        self.status = ACTIVE

    def __repr__(self):
        return f"<MVCCTransaction xid={self.xid} {self.level.value} {self.status}>"

    @property
    def closed(self) -> bool:
        return self.status in (COMMITTED, ABORTED)

    @property
    def serializable(self) -> bool:
        return self.level is IsolationLevel.SERIALIZABLE

    def _check_usable(self):
        if self.cancel is not None and self.cancel.is_set():
            raise Cancelled(f"transaction {self.xid} cancelled")
        if self.closed:
            raise StoreError(f"transaction {self.xid} is already {self.status}")
        if self.status == FAILED:
            raise StoreError(
                "current transaction is aborted, commands ignored until end of transaction block",
                IN_FAILED_TRANSACTION,
            )

    def _begin_statement(self) -> int:
        """핸들을 쓸 수 있는지 확인하고, 이 문장이 읽을 타임스탬프를 돌려준다."""
        self._check_usable()
        if self.snapshot is None:
            self.snapshot = self.store._alloc_tid()
        if self.level.uses_snapshot:
            return self.snapshot
        return self.store._now_ts()

    def _fail(self, kind: ConflictKind, sqlstate: str, message: str) -> ConflictError:
        self.status = FAILED
        return ConflictError(kind, sqlstate, message)

    def _value_at(self, key: str, ts: int) -> Optional[int]:
        # 내가 쓴 값이 있으면 그걸 먼저
        if key in self.write_set:
            return self.write_set[key]
        return self.store._read_version(key, ts)

    def _check_serializable(self):
        if self.store._has_dangerous_structure(self):
            raise self._fail(ConflictKind.READ_WRITE, SERIALIZATION_FAILURE, RW_DEPENDENCIES_MSG)

    def read(self, name: str) -> Balance:
        ts = self._begin_statement()
        value = self._value_at(name, ts)
        if self.serializable:
            self.store._mark_read(self, name)
            self._check_serializable()
        if value is None:
            raise EntityNotFound(name)
        return Balance(name=name, value=value)

    def scan(self, predicate: Callable[[int], bool]) -> List[Balance]:
        ts = self._begin_statement()
        rows = []
        for key in sorted(set(self.store.data) | set(self.write_set)):
            value = self._value_at(key, ts)
            if value is not None and predicate(value):
                rows.append(Balance(name=key, value=value))
        if self.serializable:
            self.store._mark_read(self, RELATION)
            self._check_serializable()
        return rows

    def write(self, name: str, value: int) -> int:
        self._begin_statement()
        if name not in self.write_set and self.store._latest_commit_ts(name) is None:
            raise EntityNotFound(name)

        # postgres처럼 락을 먼저 잡고 검사한다. 실패해도 락은 rollback 때 풀린다
        if not self.store.locks.try_acquire(name, self.xid):
            raise self._fail(
                ConflictKind.LOCK_NOT_AVAILABLE, LOCK_NOT_AVAILABLE,
                "canceling statement due to lock timeout",
            )

        if self.level.uses_snapshot:
            latest = self.store._latest_commit_ts(name)
            if latest is not None and latest > self.snapshot:
                raise self._fail(ConflictKind.WRITE_WRITE, SERIALIZATION_FAILURE, CONCURRENT_UPDATE_MSG)

        if self.serializable:
            self.store._mark_write(self, name)
            self._check_serializable()

        self.write_set[name] = value
        return 1

    def commit(self) -> None:
        if self.status == FAILED:
            # postgres는 실패한 블록의 COMMIT을 ROLLBACK으로 처리한다
            self.rollback()
            raise StoreError("transaction was aborted, commit rolled back", IN_FAILED_TRANSACTION)
        self._check_usable()
        if self.serializable:
            self._check_serializable()
        self.commit_ts = self.store._alloc_tid()
        self.store._write_commit(self.write_set, self.commit_ts)
        self.status = COMMITTED
        self.store.locks.release_all(self.xid)

    def rollback(self) -> None:
        if self.closed:
            return
        self.status = ABORTED
        self.write_set = {}
        self.store.locks.release_all(self.xid)
