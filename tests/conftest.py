import pytest

from browserwarden.core.config import LifecycleSettings
from browserwarden.service.manager import SessionManager
from fakes import FakeClock, FakeDriver, FakeInspector


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return LifecycleSettings(
        base_dir=tmp_path / "playwright",
        session_timeout_seconds=30 * 60,
        cleanup_interval_seconds=5 * 60,
        max_memory_mb=2048,
        shutdown_timeout_seconds=1,
    )


@pytest.fixture
def inspector():
    return FakeInspector()


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def manager(settings, driver, inspector, clock):
    settings.ensure_dirs()
    return SessionManager(settings, driver=driver, inspector=inspector, clock=clock)
