"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import switchyard`
works consistently in all tests, and keeps the tests away from real
infrastructure (no table creation on the default engine, no Celery broker).
"""

import os
import sys
from pathlib import Path

os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("EVENT_BACKEND", "none")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402

from switchyard.services.conversation_lock import KeyedLock  # noqa: E402
from switchyard.services.event_bus import QueueEventPublisher  # noqa: E402
from switchyard.services.switchyard_service import SwitchyardService  # noqa: E402
from tests.utils import build_mock_registry, make_session_factory, seed_catalog  # noqa: E402


@pytest.fixture
def session_factory():
    factory = make_session_factory()
    with factory() as session:
        seed_catalog(session)
    return factory


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def driver_registry():
    registry = build_mock_registry()
    yield registry
    registry.close()


@pytest.fixture
def publisher():
    return QueueEventPublisher()


@pytest.fixture
def published_events(publisher):
    """订阅 publisher 的事件收集器；断言前需要先 drain() 或停止后台线程。"""
    events = []
    publisher.subscribe(events.append)
    return events


@pytest.fixture
def service(driver_registry, publisher):
    return SwitchyardService(
        driver_registry=driver_registry,
        lock=KeyedLock(timeout=5),
        publisher=publisher,
    )


@pytest.fixture
def app_with_inmemory_db(service):
    from switchyard.routes import create_app
    from tests.utils import install_inmemory_db

    app = create_app()
    SessionLocal = install_inmemory_db(app, service)
    return app, SessionLocal
