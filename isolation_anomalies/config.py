import os

# 로컬 postgres (docker run -p 5432:5432 -e POSTGRES_PASSWORD=postgres postgres)
PG_DSN = os.environ.get(
    "ISOLATION_ANOMALIES_DSN",
    "host=127.0.0.1 dbname=postgres user=postgres password=postgres port=5432",
)
SCHEMA = os.environ.get("ISOLATION_ANOMALIES_SCHEMA", "dev")
TABLE = "balances"

# 시나리오가 행 락에서 멈추지 않도록, 넘으면 55P03으로 보고된다
LOCK_TIMEOUT_MS = int(os.environ.get("ISOLATION_ANOMALIES_LOCK_TIMEOUT_MS", "5000"))

# 설정되어 있으면 CLI가 여기에 저널을 남긴다 (--log-dir 기본값)
LOG_DIR = os.environ.get("ISOLATION_ANOMALIES_LOG_DIR")
DEFAULT_LOG_DIR = "./_isolation_logs"
