"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import sessionmaker

from cryptopay_gateway.config import ClientConfig, settings
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient
from cryptopay_gateway.infrastructure.database.session import SessionLocal
from cryptopay_gateway.services.monitor import PaymentMonitor
from cryptopay_gateway.services.verifier import PaymentVerifier


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache(maxsize=1)
def get_explorer_client() -> ExplorerClient:
    """One explorer client per process so every request shares the rate limit and cache"""
    return ExplorerClient(ClientConfig.from_settings(settings))


def get_verifier(explorer: ExplorerClient = Depends(get_explorer_client)) -> PaymentVerifier:
    return PaymentVerifier(explorer)


def get_monitor(explorer: ExplorerClient = Depends(get_explorer_client)) -> PaymentMonitor:
    """Monitor whose candidate listings go stale well before the next poll"""
    interval = settings.monitor_poll_interval_seconds
    verifier = PaymentVerifier(explorer, max_age=min(settings.etherscan_cache_ttl, interval / 2))
    return PaymentMonitor(verifier, poll_interval=interval)


def get_session_factory() -> sessionmaker:
    """Session factory for background work that outlives the request session"""
    return SessionLocal
