"""Pytest fixtures for testing"""

import pytest
import httpx
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from cryptopay_gateway.api.dependencies import get_explorer_client, get_session_factory
from cryptopay_gateway.api.main import create_app
from cryptopay_gateway.config import ClientConfig
from cryptopay_gateway.domain.models import TransactionCandidate
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient
from cryptopay_gateway.infrastructure.clients.transport import ExplorerTransport
from cryptopay_gateway.infrastructure.database.models import Base
from cryptopay_gateway.infrastructure.database.session import get_db
from mock_explorer.main import (
    SEED_RECIPIENT,
    SEED_SENDER,
    MockChain,
    create_app as create_mock_explorer,
    seeded_chain,
)


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MOCK_EXPLORER_URL = "http://mock-explorer/api"
RECIPIENT = SEED_RECIPIENT
SENDER = SEED_SENDER


class FakeClock:
    """Monotonic clock whose sleep just advances time"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_candidate(
    tx_hash: str = "0x" + "a" * 64,
    value: int = 10**18,
    confirmations: int = 12,
    block_number: int = 990,
    success: bool = True,
    recipient: str = RECIPIENT,
    contract_address: str | None = None,
) -> TransactionCandidate:
    return TransactionCandidate(
        tx_hash=tx_hash,
        sender=SENDER,
        recipient=recipient,
        value=value,
        block_number=block_number,
        success=success,
        confirmations=confirmations,
        contract_address=contract_address,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chain() -> MockChain:
    """Fresh seeded chain per test"""
    return seeded_chain()


@pytest.fixture
def explorer_config() -> ClientConfig:
    return (
        ClientConfig.builder()
        .api_key("test-key")
        .base_url(MOCK_EXPLORER_URL)
        .rate_limit(1000)
        .cache_ttl(60)
        .build()
    )


@pytest.fixture
def explorer(chain: MockChain, explorer_config: ClientConfig) -> ExplorerClient:
    """Explorer client wired to the in-process mock explorer"""
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_mock_explorer(chain)))
    transport = ExplorerTransport(explorer_config.base_url, client=http)
    return ExplorerClient(explorer_config, transport=transport)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, explorer: ExplorerClient) -> TestClient:
    """Create FastAPI test client with test database and mock explorer"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_explorer_client] = lambda: explorer
    return TestClient(app)
