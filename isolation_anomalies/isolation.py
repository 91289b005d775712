from enum import Enum

import psycopg


class IsolationLevel(Enum):
    """
    하네스가 스토어에 요청할 수 있는 격리 수준.
    - 하네스는 격리를 직접 보장하지 않는다. begin()에 그대로 넘길 뿐.
    """
    READ_COMMITTED = "read-committed"
    REPEATABLE_READ = "repeatable-read"
    SERIALIZABLE = "serializable"

    @property
    def psycopg_level(self) -> psycopg.IsolationLevel:
        return psycopg.IsolationLevel[self.name]

    @property
    def uses_snapshot(self) -> bool:
        # 문장마다가 아니라 첫 문장에서 스냅샷을 고정하는 수준
        return self is not IsolationLevel.READ_COMMITTED

    @classmethod
    def parse(cls, text: str) -> "IsolationLevel":
        key = text.strip().lower().replace("_", "-").replace(" ", "-")
        for level in cls:
            if level.value == key:
                return level
        raise ValueError(f"unknown isolation level: {text!r}")


LEVELS = list(IsolationLevel)
