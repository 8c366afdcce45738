"""
Shared fixtures: file-backed SQLite database, a fake Monty API and the app
"""
import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from simwego_gateway.api.auth import issue_admin_token
from simwego_gateway.api.main import create_app
from simwego_gateway.core.config import Settings
from simwego_gateway.core.database import close_db, create_engine, create_session_factory, init_db
from simwego_gateway.models.schemas import ClientCreate
from simwego_gateway.services.client_registry import ClientRegistry
from simwego_gateway.services.credential_vault import CredentialVault
from simwego_gateway.services.session_broker import SessionBroker
from simwego_gateway.services.token_cache import TokenCacheStore
from simwego_gateway.services.upstream_client import (
    HEALTH_PATH, LOGIN_PATH, REFRESH_PATH, UpstreamClient,
)

MONTY_USERNAME = "reseller"
MONTY_PASSWORD = "s3cret-pass"


class FakeMonty:
    """In-process stand-in for the Monty authentication endpoints"""

    def __init__(self):
        self.accounts = {MONTY_USERNAME: MONTY_PASSWORD, "enduser": "enduser-pass"}
        self.expires_in = 3600
        self.login_status = None
        self.refresh_status = None
        self.health_status = 200
        self.omit_refresh_token = False
        self.delay = 0.0
        self.login_calls = 0
        self.refresh_calls = 0
        self.requests = []
        self._issued = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        path = request.url.path
        if path == LOGIN_PATH:
            self.login_calls += 1
            if self.login_status:
                return httpx.Response(self.login_status, json={"message": "upstream internals"})
            body = json.loads(request.content)
            if self.accounts.get(body.get("username")) != body.get("password"):
                return httpx.Response(401, json={"message": "Invalid credentials"})
            return httpx.Response(200, json=self._token_body("login"))

        if path == REFRESH_PATH:
            self.refresh_calls += 1
            if self.refresh_status:
                return httpx.Response(self.refresh_status, json={"message": "refresh rejected"})
            return httpx.Response(200, json=self._token_body("refresh"))

        if path == HEALTH_PATH:
            return httpx.Response(self.health_status)

        return httpx.Response(404)

    def _token_body(self, source: str) -> dict:
        self._issued += 1
        body = {
            "access_token": f"{source}-token-{self._issued}",
            "expires_in": self.expires_in,
            "agent_id": "agent-42",
            "reseller_id": "reseller-7",
        }
        if not self.omit_refresh_token:
            body["refresh_token"] = f"refresh-token-{self._issued}"
        return body


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        DB_ENCRYPTION_KEY="test-encryption-key",
        ADMIN_JWT_SECRET="test-admin-secret-0123456789abcdef0123",
        UPSTREAM_API_BASE_URL="https://monty.test",
        TOKEN_CLEANUP_ENABLED=False,
        LOG_LEVEL="WARNING",
        LOG_JSON=False,
    )


@pytest.fixture
def fake_monty():
    return FakeMonty()


@pytest.fixture
def transport(fake_monty):
    return httpx.MockTransport(fake_monty.handler)


# ========== Service fixtures ==========

@pytest.fixture
async def engine(settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def vault(settings):
    return CredentialVault(settings.DB_ENCRYPTION_KEY)


@pytest.fixture
def registry(vault):
    return ClientRegistry(vault)


@pytest.fixture
def token_cache(settings):
    return TokenCacheStore(margin_seconds=settings.TOKEN_VALIDITY_MARGIN)


@pytest.fixture
def upstream(settings, transport):
    return UpstreamClient(settings, transport=transport)


@pytest.fixture
def broker(registry, token_cache, upstream, session_factory):
    return SessionBroker(registry, token_cache, upstream, session_factory)


@pytest.fixture
async def tenant(registry, db):
    """Active client holding valid Monty credentials"""
    return await registry.create(
        db,
        ClientCreate(
            name="Acme Travel",
            upstream_username=MONTY_USERNAME,
            upstream_password=MONTY_PASSWORD,
        ),
    )


# ========== HTTP fixtures ==========

@pytest.fixture
def app(settings, transport):
    return create_app(settings, upstream_transport=transport)


@pytest.fixture
def api(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(settings):
    token = issue_admin_token(settings, "admin-1", "ops")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def registered_client(api, admin_headers):
    """Client created through the admin API, its session already cached"""
    response = api.post(
        "/admin/clients",
        json={
            "name": "Acme Travel",
            "upstream_username": MONTY_USERNAME,
            "upstream_password": MONTY_PASSWORD,
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def tenant_headers(registered_client):
    return {"Authorization": f"Bearer {registered_client['api_key']}"}
