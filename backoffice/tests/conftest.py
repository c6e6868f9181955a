"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: fresh SQLite in-memory database per test
- catalog_loader: the packaged catalog.yml, singleton reset around each test
- clock: controllable UTC clock injected into services
- admin_service / onboard: service-level helpers
- make_yaml_config: write a catalog YAML to a temp dir
- make_token: HS256 admin bearer tokens
- webhook_secret: BILLING_WEBHOOK_SECRET for signed billing events
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")

TEST_JWT_SECRET = "test-admin-secret"
TEST_WEBHOOK_SECRET = "test-webhook-secret"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_engine():
    """
    SQLite in-memory engine with all tables created.

    Function-scoped: every test gets an empty database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from backoffice.db_base import Base
    from backoffice import models  # noqa: F401 - registers all tables

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


# =============================================================================
# Catalog
# =============================================================================

@pytest.fixture
def catalog_loader(monkeypatch):
    """The packaged catalog.yml, with the singleton reset before and after."""
    from backoffice.entitlements.loader import get_catalog_loader, reset_catalog_loader

    monkeypatch.delenv("CATALOG_CONFIG_PATH", raising=False)
    reset_catalog_loader()
    loader = get_catalog_loader()
    yield loader
    reset_catalog_loader()


@pytest.fixture
def temp_config_dir(tmp_path) -> Path:
    return tmp_path


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("catalog.yml", {"features": [...]})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make


# =============================================================================
# Time
# =============================================================================

class FakeClock:
    """
    Deterministic UTC clock.

    Each read advances one second so events written in sequence keep a
    strict created_at order.
    """

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def admin_service(db_session, catalog_loader, clock):
    from backoffice.entitlements.locking import TenantLockRegistry
    from backoffice.services.admin_service import AdminService

    return AdminService(
        db_session,
        loader=catalog_loader,
        locks=TenantLockRegistry(),
        clock=clock,
    )


@pytest.fixture
def onboard(admin_service):
    """
    Factory: onboard a restaurant and return its id.

    Usage:
        tenant_id = onboard("Pizza Place", "starter")
    """
    def _onboard(name: str = "Falafel House", plan_tier: str = "starter", **kwargs) -> str:
        restaurant = admin_service.onboard_restaurant(
            name=name,
            plan_tier=plan_tier,
            actor_id="admin-1",
            **kwargs,
        )
        return restaurant["id"]
    return _onboard


# =============================================================================
# Auth
# =============================================================================

@pytest.fixture
def admin_jwt_secret(monkeypatch):
    monkeypatch.setenv("ADMIN_JWT_SECRET", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setenv("BILLING_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def make_token(admin_jwt_secret):
    """Factory for signed admin bearer tokens."""
    def _make(
        role: str = "superadmin",
        sub: str = "admin-1",
        expires_in: timedelta = timedelta(hours=1),
        secret: str = None,
    ) -> str:
        payload = {
            "sub": sub,
            "role": role,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        return jwt.encode(payload, secret or admin_jwt_secret, algorithm="HS256")
    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
