import pytest

from tests.fake_service import FakeTraceService, build_client


@pytest.fixture
def service() -> FakeTraceService:
    return FakeTraceService()


@pytest.fixture
def client(service):
    return build_client(service)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    # Keep developer RUNTRACE_* settings out of the tests
    for var in ("RUNTRACE_API_URL", "RUNTRACE_API_KEY", "RUNTRACE_PROJECT", "RUNTRACE_TIMEOUT_S", "RUNTRACE_PAGE_SIZE"):
        monkeypatch.delenv(var, raising=False)
