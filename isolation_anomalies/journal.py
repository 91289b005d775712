from typing import List, Optional
import json
import os
import time


# ---------- JSON-lines 이벤트 저널 ----------
class Journal:
    """
    시나리오 이벤트의 append-only 기록.
    - path가 있으면 파일에, 없으면 메모리에 남긴다
    - echo=True면 이벤트마다 '  - [A] read Alice -> 100' 형태로 출력도 한다
    """
    def __init__(self, path: Optional[str] = None, echo: bool = False):
        self.path = path
        self.echo = echo
        self.records: List[dict] = []
        if path:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if not os.path.exists(path):
                with open(path, "w", encoding="utf-8"):
                    pass

    def append(self, record: dict) -> None:
        record = dict(record)
        record["ts"] = time.time()
        if self.path:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        else:
            self.records.append(record)
        if self.echo:
            print(self.format(record))

    def load(self) -> List[dict]:
        if not self.path:
            return list(self.records)
        out: List[dict] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                out.append(json.loads(line))
        return out

    def last_by_scenario(self, scenario: str) -> Optional[dict]:
        last = None
        for rec in self.load():
            if rec.get("scenario") == scenario:
                last = rec
        return last

    @staticmethod
    def format(record: dict) -> str:
        event = record.get("event")
        target = record.get("key") or record.get("predicate") or ""
        if event == "STEP":
            line = f"  - [{record['actor']}] {record['op']} {target}".rstrip()
            if "result" in record:
                line += f" -> {record['result']}"
            return line
        if event == "CONFLICT":
            return f"  - [{record['actor']}] {record['op']} {target} rejected: {record['sqlstate']} {record['message']}"
        if event == "VERDICT":
            return f"  => {record['scenario']}: observed={record['observed']} error={record.get('conflict')}"
        return f"  * {event} " + ", ".join(f"{k}={v}" for k, v in record.items() if k not in ("event", "ts"))
