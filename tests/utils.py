from __future__ import annotations

from typing import Iterable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from switchyard.db import get_db_session
from switchyard.deps import get_db, get_switchyard_service
from switchyard.models import Base, Provider, ProviderModel
from switchyard.provider import DriverRegistry, MockDriver, ModelInfo

# (provider, driver status, [(model, context_window, is_default)])
DEFAULT_CATALOG: list[tuple[str, str, list[tuple[str, int, bool]]]] = [
    ("openai", "active", [("gpt-4o", 128000, True), ("gpt-4o-mini", 128000, False)]),
    ("xai", "active", [("grok-2", 131072, True)]),
    ("gemini", "active", [("gemini-1.5-flash", 1000000, True)]),
    ("local", "active", [("llama3", 2048, True)]),
    ("offline", "active", [("offline-model", 8192, True)]),
    ("retired", "inactive", [("old-1", 4096, True)]),
]


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


def seed_provider(
    session: Session,
    name: str,
    models: Iterable[tuple[str, int, bool]],
    *,
    status: str = "active",
    driver: str = "mock",
) -> Provider:
    provider = Provider(name=name, display_name=name.title(), driver=driver, status=status)
    session.add(provider)
    session.flush()
    for model_name, window, is_default in models:
        session.add(
            ProviderModel(
                provider_id=provider.id,
                name=model_name,
                display_name=model_name,
                context_window=window,
                capabilities=["chat"],
                status="active",
                is_default=is_default,
            )
        )
    session.commit()
    return provider


def seed_catalog(session: Session) -> None:
    for name, status, models in DEFAULT_CATALOG:
        seed_provider(session, name, models, status=status)


def build_mock_registry() -> DriverRegistry:
    registry = DriverRegistry()
    for name, _status, models in DEFAULT_CATALOG:
        registry.register(
            MockDriver(
                name,
                models=[ModelInfo(id=m, context_window=w) for m, w, _ in models],
                available=name != "offline",
            )
        )
    return registry


def install_inmemory_db(app, service=None, *, seed: bool = True) -> sessionmaker[Session]:
    """
    Attach an in-memory SQLite database (and optionally a prepared service) to the FastAPI app.
    """

    SessionLocal = make_session_factory()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_db_session] = override_get_db
    if service is not None:
        app.dependency_overrides[get_switchyard_service] = lambda: service

    if seed:
        with SessionLocal() as session:
            seed_catalog(session)
    return SessionLocal


__all__ = [
    "DEFAULT_CATALOG",
    "build_mock_registry",
    "install_inmemory_db",
    "make_session_factory",
    "seed_catalog",
    "seed_provider",
]
