from contextlib import contextmanager
from threading import Event, Thread
from typing import Any, Dict, List, Optional, Sequence

import psycopg  # psycopg3
from psycopg import sql
from psycopg.rows import class_row

from . import config
from .errors import Cancelled, ConflictError, EntityNotFound, StoreError
from .fixture import SEED, Balance, ValueBelow
from .isolation import IsolationLevel

# cancel 이벤트를 확인하는 주기(초)
WATCH_INTERVAL = 0.05


def _translate(exc: psycopg.Error) -> Exception:
    """충돌은 ConflictError로, 그 밖의 오류는 설정 오류(StoreError)로."""
    sqlstate = exc.sqlstate or ""
    message = exc.diag.message_primary or str(exc)
    conflict = ConflictError.from_sqlstate(sqlstate, message)
    if conflict is not None:
        return conflict
    return StoreError(message, sqlstate or None)


class PostgresStore:
    """
    실제 postgres 서버 위의 잔고 픽스처.
    - begin()마다 커넥션을 새로 연다 (두 핸들이 커넥션을 공유하지 않음)
    - lock_timeout으로 행 락 대기를 제한하고, 타임아웃은 충돌로 보고된다
    """

    def __init__(self, dsn: str = config.PG_DSN, schema: str = config.SCHEMA,
                 lock_timeout_ms: int = config.LOCK_TIMEOUT_MS):
        self.dsn = dsn
        self.schema = schema
        self.lock_timeout_ms = lock_timeout_ms
        self.table = sql.Identifier(schema, config.TABLE)

    def _connect(self, autocommit: bool = False) -> psycopg.Connection:
        try:
            return psycopg.connect(
                self.dsn,
                autocommit=autocommit,
                options=f"-c lock_timeout={self.lock_timeout_ms}",
            )
        except psycopg.Error as exc:
            raise _translate(exc) from exc

    def setup(self) -> None:
        ddl = sql.SQL("""
            CREATE SCHEMA IF NOT EXISTS {schema};
            DROP TABLE IF EXISTS {table};
            CREATE TABLE {table} (
                name TEXT NOT NULL PRIMARY KEY,
                value INT NOT NULL
            );
        """).format(schema=sql.Identifier(self.schema), table=self.table)
        with self._connect(autocommit=True) as conn:
            try:
                conn.execute(ddl)
            except psycopg.Error as exc:
                raise _translate(exc) from exc

    def reset(self, seed: Dict[str, int] = SEED) -> None:
        with self._connect() as conn:
            try:
                conn.execute(sql.SQL("TRUNCATE {} RESTART IDENTITY CASCADE").format(self.table))
                with conn.cursor() as cur:
                    cur.executemany(
                        sql.SQL("INSERT INTO {} (name, value) VALUES (%s, %s)").format(self.table),
                        list(seed.items()),
                    )
                conn.commit()
            except psycopg.Error as exc:
                raise _translate(exc) from exc

    def balances(self) -> Dict[str, int]:
        with self._connect(autocommit=True) as conn:
            try:
                rows = conn.execute(
                    sql.SQL("SELECT name, value FROM {} ORDER BY name").format(self.table)
                ).fetchall()
            except psycopg.Error as exc:
                raise _translate(exc) from exc
        return {name: value for name, value in rows}

    def begin(self, level: IsolationLevel, cancel: Optional[Event] = None) -> "PostgresTransaction":
        conn = self._connect()
        # psycopg가 첫 문장 전에 보내는 암묵적 BEGIN에 적용된다
        conn.isolation_level = level.psycopg_level
        return PostgresTransaction(conn, level, self.table, cancel)


class PostgresTransaction:
    """
    자기 커넥션 위의 트랜잭션 하나.
    - execute()/query(): 가공하지 않은 문장 경계
    - read()/write()/scan(): 그 위에 얹은 잔고 헬퍼
    - cancel 이벤트가 켜지면 실행 중인 문장도 conn.cancel()로 끊고 Cancelled를 던진다
    - commit()/rollback()은 커넥션을 닫는다. 그 뒤의 rollback()은 아무 일도 안 함
    """

    def __init__(self, conn: psycopg.Connection, level: IsolationLevel, table: sql.Identifier,
                 cancel: Optional[Event] = None):
        self.conn = conn
        self.level = level
        self.table = table
        self.cancel = cancel

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<PostgresTransaction {self.level.value} {state}>"

    @property
    def closed(self) -> bool:
        return self.conn.closed

    @contextmanager
    def _watch(self):
        """
        문장이 도는 동안 cancel 이벤트를 지켜보는 스레드.
        - 이미 켜져 있으면 문장을 보내지 않고 바로 Cancelled
        - 도중에 켜지면 서버에 취소 요청을 보낸다 (문장은 57014로 끝남)
        """
        if self.cancel is None:
            yield
            return
        if self.cancel.is_set():
            raise Cancelled("transaction cancelled")
        done = Event()

        def watch():
            while not done.wait(WATCH_INTERVAL):
                if self.cancel.is_set():
                    self.conn.cancel()
                    return

        watcher = Thread(target=watch, daemon=True)
        watcher.start()
        try:
            yield
        finally:
            done.set()
            watcher.join()

    def _raise(self, exc: psycopg.Error):
        if isinstance(exc, psycopg.errors.QueryCanceled) and self.cancel is not None and self.cancel.is_set():
            raise Cancelled("transaction cancelled while a statement was running") from exc
        raise _translate(exc) from exc

    def execute(self, statement: Any, params: Optional[Sequence[Any]] = None) -> int:
        try:
            with self._watch(), self.conn.cursor() as cur:
                cur.execute(statement, params)
                return cur.rowcount
        except psycopg.Error as exc:
            self._raise(exc)

    def query(self, statement: Any, params: Optional[Sequence[Any]] = None) -> List[Balance]:
        try:
            with self._watch(), self.conn.cursor(row_factory=class_row(Balance)) as cur:
                cur.execute(statement, params)
                return cur.fetchall()
        except psycopg.Error as exc:
            self._raise(exc)

    def read(self, name: str) -> Balance:
        rows = self.query(
            sql.SQL("SELECT name, value FROM {} WHERE name = %s").format(self.table), (name,)
        )
        if not rows:
            raise EntityNotFound(name)
        return rows[0]

    def write(self, name: str, value: int) -> int:
        affected = self.execute(
            sql.SQL("UPDATE {} SET value = %s WHERE name = %s").format(self.table), (value, name)
        )
        if affected == 0:
            raise EntityNotFound(name)
        return affected

    def scan(self, predicate: ValueBelow) -> List[Balance]:
        where, params = predicate.where()
        return self.query(
            sql.SQL("SELECT name, value FROM {} WHERE " + where + " ORDER BY name").format(self.table),
            params,
        )

    def commit(self) -> None:
        try:
            with self._watch():
                self.conn.commit()
        except psycopg.Error as exc:
            self._raise(exc)
        finally:
            self.conn.close()

    def rollback(self) -> None:
        # 취소 여부와 상관없이 항상 끝까지 되돌린다
        if self.conn.closed:
            return
        try:
            self.conn.rollback()
        except psycopg.Error as exc:
            raise _translate(exc) from exc
        finally:
            self.conn.close()
