"""Test configuration."""
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./panel_test.db")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("PANEL_ENV", "test")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ.setdefault("SEED_DEFAULT_RULES", "false")

from panel.db import get_db  # noqa: E402
from panel.dependencies import get_dispatcher  # noqa: E402
from panel.main import app  # noqa: E402
from panel.models import AlertRule, Base, Client, Node, NotifyChannel  # noqa: E402
from panel.services.alert_dispatch import AlertDispatcher  # noqa: E402
from panel.services.notifier_factory import create_notifier  # noqa: E402
from panel.services.notifiers import Notifier  # noqa: E402
from panel.utils.errors import TransportError  # noqa: E402

DB_PATH = Path("./panel_test.db")

# --- Fresh database file for the session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)
Base.metadata.create_all(bind=engine)


def _truncate_all() -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return TestingSessionLocal


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        _truncate_all()


class FakeNotifier(Notifier):
    def __init__(self, factory: "RecordingNotifierFactory", channel: NotifyChannel) -> None:
        self.factory = factory
        self.channel_id = channel.id
        self.channel_type = channel.type

    def send(self, title: str, body: str) -> None:
        self.factory.attempts.append((self.channel_id, title, body))
        failure = self.factory.failures.get(self.channel_id)
        if failure is not None:
            raise failure
        self.factory.sent.append((self.channel_id, title, body))


class RecordingNotifierFactory:
    """Validates channels like the real factory, then records instead of sending."""

    def __init__(self) -> None:
        self.attempts: list[tuple[int, str, str]] = []
        self.sent: list[tuple[int, str, str]] = []
        self.failures: dict[int, Exception] = {}

    def fail(self, channel_id: int, error: Exception | None = None) -> None:
        self.failures[channel_id] = error or TransportError("webhook", "response", "status 500: boom")

    def __call__(self, channel: NotifyChannel) -> Notifier:
        create_notifier(channel)
        return FakeNotifier(self, channel)


class RecordingMetrics:
    def __init__(self) -> None:
        self.deliveries: list[tuple[str, str, str]] = []
        self.suppressions: list[tuple[str, str]] = []
        self.persistence_errors: list[str] = []

    def delivery(self, alert_type: str, channel_type: str, status: str) -> None:
        self.deliveries.append((alert_type, channel_type, status))

    def suppressed(self, alert_type: str, reason: str) -> None:
        self.suppressions.append((alert_type, reason))

    def persistence_error(self, operation: str) -> None:
        self.persistence_errors.append(operation)


@pytest.fixture
def notifiers() -> RecordingNotifierFactory:
    return RecordingNotifierFactory()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def dispatcher(notifiers: RecordingNotifierFactory, metrics: RecordingMetrics) -> AlertDispatcher:
    return AlertDispatcher(notifier_factory=notifiers, metrics=metrics)


@pytest.fixture
def make_channel(db_session: Session) -> Callable[..., NotifyChannel]:
    def _factory(
        *,
        type: str = "webhook",
        config: dict | str | None = None,
        enabled: bool = True,
        name: str = "ops",
    ) -> NotifyChannel:
        if config is None:
            config = {"url": "https://hooks.example.com/alerts"}
        raw = config if isinstance(config, str) else json.dumps(config)
        channel = NotifyChannel(name=name, type=type, config=raw, enabled=enabled)
        db_session.add(channel)
        db_session.commit()
        return channel

    return _factory


@pytest.fixture
def make_rule(db_session: Session) -> Callable[..., AlertRule]:
    def _factory(
        *,
        type: str,
        channels: list[NotifyChannel] | str = "",
        threshold: int | None = None,
        cooldown_minutes: int = 60,
        enabled: bool = True,
        last_alert_at: datetime | None = None,
        name: str | None = None,
    ) -> AlertRule:
        if isinstance(channels, str):
            channel_ids = channels
        else:
            channel_ids = ",".join(str(channel.id) for channel in channels)
        condition = "{}" if threshold is None else json.dumps({"threshold": threshold})
        rule = AlertRule(
            name=name or f"{type} rule",
            type=type,
            condition=condition,
            enabled=enabled,
            cooldown_minutes=cooldown_minutes,
            channel_ids=channel_ids,
            last_alert_at=last_alert_at,
        )
        db_session.add(rule)
        db_session.commit()
        return rule

    return _factory


@pytest.fixture
def make_node(db_session: Session) -> Callable[..., Node]:
    def _factory(name: str = "edge-hk-1", **fields) -> Node:
        node = Node(name=name, **fields)
        db_session.add(node)
        db_session.commit()
        return node

    return _factory


@pytest.fixture
def make_client(db_session: Session) -> Callable[..., Client]:
    def _factory(name: str = "client-alpha", **fields) -> Client:
        client = Client(name=name, **fields)
        db_session.add(client)
        db_session.commit()
        return client

    return _factory


@pytest.fixture
def override_dependencies(dispatcher: AlertDispatcher) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_dispatcher, None)


@pytest.fixture
async def client(override_dependencies: None) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['ADMIN_API_TOKEN']}"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
