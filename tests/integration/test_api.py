"""Integration tests for API endpoints"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from conftest import MOCK_EXPLORER_URL, RECIPIENT, TestingSessionLocal
from cryptopay_gateway.api.dependencies import get_monitor, get_verifier
from cryptopay_gateway.api.v1.payments import monitor_payment
from cryptopay_gateway.config import ClientConfig, settings
from cryptopay_gateway.domain.exceptions import TransportError
from cryptopay_gateway.domain.models import Payment, PaymentRequest, PaymentState, VerificationResult
from cryptopay_gateway.infrastructure.cache import TTLCache
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient
from cryptopay_gateway.infrastructure.clients.transport import ExplorerTransport
from cryptopay_gateway.infrastructure.database.repositories import PaymentRepository
from cryptopay_gateway.services.monitor import PaymentMonitor
from cryptopay_gateway.services.verifier import PaymentVerifier
from mock_explorer.main import USDC_CONTRACT, MockChain, MockTx, create_app as create_mock_explorer

CONFIRMED_HASH = "0x" + "a" * 64


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "cryptopay_explorer_requests_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"
    assert client.get("/health").headers["X-Request-ID"]


def test_verify_confirmed_native_payment(client: TestClient):
    """Seeded 1 ETH payment with 11 confirmations"""
    response = client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": RECIPIENT, "required_confirmations": 6},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "confirmed"
    assert data["tx_hash"] == CONFIRMED_HASH
    assert data["confirmations"] == 11


def test_verify_pending_when_more_confirmations_required(client: TestClient):
    response = client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": RECIPIENT, "required_confirmations": 50},
    )
    assert response.json()["outcome"] == "pending"


def test_verify_token_payment(client: TestClient):
    response = client.post(
        "/v1/payments/verify",
        json={
            "amount": "250",
            "recipient_address": RECIPIENT,
            "required_confirmations": 1,
            "currency": {"kind": "token", "contract_address": USDC_CONTRACT, "decimals": 6},
        },
    )
    assert response.status_code == 200
    assert response.json()["outcome"] == "confirmed"


def test_verify_invalid_address_is_bad_request(client: TestClient):
    response = client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": "0x" + "z" * 40, "required_confirmations": 1},
    )
    assert response.status_code == 400


def test_verify_token_without_contract_is_bad_request(client: TestClient):
    response = client.post(
        "/v1/payments/verify",
        json={
            "amount": "1",
            "recipient_address": RECIPIENT,
            "required_confirmations": 1,
            "currency": {"kind": "token"},
        },
    )
    assert response.status_code == 400


def test_verify_negative_confirmations_is_unprocessable(client: TestClient):
    response = client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": RECIPIENT, "required_confirmations": -1},
    )
    assert response.status_code == 422


@patch("cryptopay_gateway.services.verifier.PaymentVerifier.verify_payment")
def test_verify_explorer_down_is_service_unavailable(mock_verify: AsyncMock, client: TestClient):
    mock_verify.side_effect = TransportError("connection refused")

    response = client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": RECIPIENT, "required_confirmations": 1},
    )
    assert response.status_code == 503


def test_confirmations_endpoint(client: TestClient):
    response = client.get(f"/v1/transactions/{CONFIRMED_HASH}/confirmations")
    assert response.status_code == 200
    assert response.json() == {"tx_hash": CONFIRMED_HASH, "confirmations": 11}


def test_confirmations_unknown_hash_is_not_found(client: TestClient):
    response = client.get(f"/v1/transactions/0x{'9' * 64}/confirmations")
    assert response.status_code == 404


def test_confirmations_malformed_hash_is_bad_request(client: TestClient):
    response = client.get("/v1/transactions/0x1234/confirmations")
    assert response.status_code == 400


def test_cache_stats_and_clear(client: TestClient):
    client.post(
        "/v1/payments/verify",
        json={"amount": "1", "recipient_address": RECIPIENT, "required_confirmations": 1},
    )
    stats = client.get("/v1/cache/stats").json()
    assert stats["entries"] >= 1

    assert client.delete("/v1/cache").status_code == 204
    assert client.get("/v1/cache/stats").json() == {"entries": 0, "total_weight": 0}


def test_create_payment_is_monitored_to_confirmation(client: TestClient, db: Session, explorer):
    """Background monitor persists every status it delivers"""
    client.app.dependency_overrides[get_monitor] = lambda: PaymentMonitor(
        PaymentVerifier(explorer), poll_interval=0.01
    )

    response = client.post(
        "/v1/payments",
        json={
            "amount": "1",
            "recipient_address": RECIPIENT,
            "required_confirmations": 6,
            "timeout_seconds": 3600,
            "metadata": {"order_id": "A-1"},
        },
    )
    assert response.status_code == 201
    created = response.json()
    assert created["metadata"] == {"order_id": "A-1"}
    assert created["amount"] == "1"

    # Background tasks have run by the time TestClient returns
    db.expire_all()
    payment = client.get(f"/v1/payments/{created['payment_id']}").json()
    assert payment["status"]["state"] == "confirmed"
    assert payment["status"]["tx_hash"] == CONFIRMED_HASH
    assert [event["state"] for event in payment["events"]] == ["pending", "confirmed"]


def test_create_payment_that_already_expired(client: TestClient, db: Session):
    verifier = AsyncMock(spec=PaymentVerifier)
    client.app.dependency_overrides[get_verifier] = lambda: verifier
    client.app.dependency_overrides[get_monitor] = lambda: PaymentMonitor(verifier, poll_interval=0.01)

    response = client.post(
        "/v1/payments",
        json={"amount": "5", "recipient_address": RECIPIENT, "required_confirmations": 1, "timeout_seconds": 0},
    )

    db.expire_all()
    payment = client.get(f"/v1/payments/{response.json()['payment_id']}").json()
    assert payment["status"]["state"] == "expired"
    verifier.verify_payment.assert_not_awaited()


def test_get_payment_not_found(client: TestClient):
    response = client.get("/v1/payments/00000000-0000-4000-8000-000000000000")
    assert response.status_code == 404


def test_get_payment_invalid_id(client: TestClient):
    assert client.get("/v1/payments/not-a-uuid").status_code == 400


async def test_monitor_status_writes_run_in_threadpool(db: Session):
    """Every delivered status is committed from a worker thread, not the event loop"""
    payment = Payment(request=PaymentRequest.native("1", RECIPIENT, 1))
    PaymentRepository(db).create_payment(payment)
    db.commit()

    verifier = AsyncMock(spec=PaymentVerifier)
    verifier.verify_payment.return_value = VerificationResult.confirmed(CONFIRMED_HASH, 3)
    monitor = PaymentMonitor(verifier, poll_interval=0.01)

    with patch("cryptopay_gateway.api.v1.payments.run_in_threadpool", wraps=run_in_threadpool) as offload:
        await monitor_payment(monitor, TestingSessionLocal, payment.id, payment.request)

    assert offload.await_count == 2
    db.expire_all()
    events = PaymentRepository(db).list_events(payment.id)
    assert [event.status for event in events] == ["pending", "confirmed"]


async def test_default_monitor_sees_block_mined_since_last_poll(chain: MockChain, fake_clock):
    """Shipped cache TTL and poll interval still surface each new block on the next poll"""
    merchant = "0x" + "5" * 40
    tx_hash = "0x" + "e" * 64
    chain.add(MockTx(tx_hash, chain.head, "0x" + "6" * 40, merchant, 10**18))

    config = (
        ClientConfig.builder()
        .api_key("test-key")
        .base_url(MOCK_EXPLORER_URL)
        .rate_limit(1000)
        .cache_ttl(settings.etherscan_cache_ttl)
        .build()
    )
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_mock_explorer(chain)))
    explorer = ExplorerClient(
        config,
        transport=ExplorerTransport(config.base_url, client=http),
        cache=TTLCache(config.cache_ttl_seconds, config.cache_max_size, clock=fake_clock),
    )
    monitor = get_monitor(explorer)
    request = PaymentRequest.native("1", merchant, 3)

    first = await monitor.check_payment_status(request)
    assert first.state is PaymentState.DETECTED
    assert first.confirmations == 1

    chain.mine(5)
    fake_clock.advance(monitor.poll_interval)

    second = await monitor.check_payment_status(request, first)
    assert second.state is PaymentState.CONFIRMED
    assert second.confirmations == 6
