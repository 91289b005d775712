import pytest

from isolation_anomalies.mvcc import MVCCStore


@pytest.fixture
def store():
    s = MVCCStore()
    s.reset()
    return s


@pytest.fixture
def begin(store):
    """초기화된 스토어에서 주어진 수준으로 새 핸들 두 개."""
    def _begin(level):
        return store.begin(level), store.begin(level)
    return _begin
