import argparse
import os
import sys
import time

from . import config, scenarios
from .isolation import LEVELS, IsolationLevel
from .journal import Journal
from .runner import run_matrix

HEADERS = ["scenario", "level", "outcome", "expected", "conflict", "sqlstate", "ok"]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="isolation-anomalies",
        description="Provoke dirty read / non-repeatable read / phantom / lost update / write skew "
                    "between two transactions and report which ones the store allows",
    )
    sub = p.add_subparsers(dest="store", required=True)

    # 인메모리 참조 스토어, 서버 불필요
    pm = sub.add_parser("memory")

    pp = sub.add_parser("postgres")
    pp.add_argument("--dsn", default=config.PG_DSN)
    pp.add_argument("--schema", default=config.SCHEMA)
    pp.add_argument("--lock-timeout-ms", type=int, default=config.LOCK_TIMEOUT_MS)

    for sp in (pm, pp):
        sp.add_argument("--level", action="append", choices=[lv.value for lv in LEVELS],
                        help="repeatable; default all levels")
        sp.add_argument("--scenario", action="append", choices=list(scenarios.SCENARIOS),
                        help="repeatable; default all scenarios")
        sp.add_argument("--log-dir", default=config.LOG_DIR,
                        help="write a JSON-lines journal here "
                             f"(default $ISOLATION_ANOMALIES_LOG_DIR, e.g. {config.DEFAULT_LOG_DIR})")
        sp.add_argument("--echo", action="store_true", help="print every step as it runs")
        sp.add_argument("--stop-on-fault", action="store_true")
    return p


def make_store(args):
    if args.store == "memory":
        from .mvcc import MVCCStore
        return MVCCStore()
    from .postgres import PostgresStore
    return PostgresStore(dsn=args.dsn, schema=args.schema, lock_timeout_ms=args.lock_timeout_ms)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    levels = [IsolationLevel.parse(lv) for lv in args.level] if args.level else LEVELS
    path = None
    if args.log_dir:
        path = os.path.join(args.log_dir, f"{args.store}-{int(time.time())}.log")
    # 로그 경로도 echo도 없으면 저널을 만들지 않는다
    journal = Journal(path, echo=args.echo) if (path or args.echo) else None

    store = make_store(args)
    store.setup()
    findings = run_matrix(store, levels, args.scenario, keep_going=not args.stop_on_fault, journal=journal)

    # CSV로 stdout에 출력 (스토어끼리 diff 하기 쉽게)
    print(",".join(HEADERS))
    for finding in findings:
        row = finding.row()
        print(",".join(str(row[h]) for h in HEADERS))

    return 0 if all(f.ok for f in findings) else 1


if __name__ == "__main__":
    sys.exit(main())
