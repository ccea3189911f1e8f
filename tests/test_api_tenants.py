"""
Integration tests for the tenant API
Tests listing, switching, feature and limit checks over HTTP
"""

import pytest
from fastapi import status
from httpx import AsyncClient, ASGITransport
from sqlmodel import Session

from agritenant.core.auth import create_access_token
from agritenant.core.database import get_session
from agritenant.core.dependencies import SharedTenancyState
from agritenant.main import app


@pytest.fixture
def api_app(db: Session, tmp_path):
    """App wired to the test database with fresh shared state"""
    app.dependency_overrides[get_session] = lambda: db
    app.state.tenancy = SharedTenancyState(selection_file=str(tmp_path / "selection.json"))
    yield app
    app.dependency_overrides.clear()


def client_for(application, host: str = "localhost") -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=application), base_url=f"http://{host}")


def bearer(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.mark.asyncio
async def test_health(api_app):
    async with client_for(api_app) as client:
        response = await client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "healthy", "service": "agritenant-api"}


@pytest.mark.asyncio
async def test_list_tenants(seed, api_app):
    async with client_for(api_app) as client:
        response = await client.get("/api/v1/tenants/", headers=bearer("user-1"))

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert [t["slug"] for t in body["tenants"]] == ["alpha", "gamma"]
    assert body["default_tenant_id"] == seed["alpha"]


@pytest.mark.asyncio
async def test_invalid_token_is_unauthorized(seed, api_app):
    async with client_for(api_app) as client:
        response = await client.get("/api/v1/tenants/", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_missing_token_is_rejected(seed, api_app):
    async with client_for(api_app) as client:
        response = await client.get("/api/v1/tenants/")

    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


@pytest.mark.asyncio
async def test_switch_and_current(seed, api_app):
    async with client_for(api_app) as client:
        switched = await client.post(f"/api/v1/tenants/{seed['gamma']}/switch", headers=bearer("user-1"))
        current = await client.get("/api/v1/tenants/current", headers=bearer("user-1"))

    assert switched.status_code == status.HTTP_200_OK
    assert switched.json()["slug"] == "gamma"
    assert current.json()["id"] == seed["gamma"]


@pytest.mark.asyncio
async def test_switch_to_foreign_tenant_is_forbidden(seed, api_app):
    async with client_for(api_app) as client:
        response = await client.post(f"/api/v1/tenants/{seed['beta']}/switch", headers=bearer("user-1"))

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["code"] == "ACCESS_DENIED"


@pytest.mark.asyncio
async def test_current_from_tenant_header(seed, api_app):
    headers = {**bearer("user-2"), "X-Tenant-ID": seed["beta"]}
    async with client_for(api_app) as client:
        response = await client.get("/api/v1/tenants/current", headers=headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["slug"] == "beta"


@pytest.mark.asyncio
async def test_current_from_tenant_host(seed, api_app):
    async with client_for(api_app, host="alpha-farms.in") as client:
        response = await client.get("/api/v1/tenants/current", headers=bearer("user-1"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["branding"]["app_name"] == "Alpha Kisan"


@pytest.mark.asyncio
async def test_unknown_tenant_host_is_not_found(seed, api_app):
    async with client_for(api_app, host="nobody.kisanshakti.app") as client:
        response = await client.get("/api/v1/tenants/current", headers=bearer("user-1"))

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["code"] == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_feature_and_limit_checks(seed, api_app):
    async with client_for(api_app) as client:
        feature = await client.get(f"/api/v1/tenants/{seed['alpha']}/features/ai_chat", headers=bearer("user-1"))
        limit = await client.get(
            f"/api/v1/tenants/{seed['alpha']}/limits/farmers", params={"usage": 250}, headers=bearer("user-1")
        )
        unknown = await client.get(f"/api/v1/tenants/{seed['alpha']}/limits/tractors", headers=bearer("user-1"))

    assert feature.json() == {"tenant_id": seed["alpha"], "feature": "ai_chat", "enabled": True}
    assert limit.json()["within_limit"] is False
    assert unknown.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_update_branding_requires_manager(seed, api_app):
    async with client_for(api_app) as client:
        denied = await client.patch(
            f"/api/v1/tenants/{seed['alpha']}/branding", json={"app_name": "Hijacked"}, headers=bearer("user-1")
        )
        allowed = await client.patch(
            f"/api/v1/tenants/{seed['alpha']}/branding", json={"app_name": "Alpha Fields"}, headers=bearer("owner-1")
        )

    assert denied.status_code == status.HTTP_403_FORBIDDEN
    assert allowed.status_code == status.HTTP_200_OK
    assert allowed.json()["branding"]["app_name"] == "Alpha Fields"


@pytest.mark.asyncio
async def test_update_features(seed, api_app):
    async with client_for(api_app) as client:
        response = await client.patch(
            f"/api/v1/tenants/{seed['beta']}/features", json={"soil_testing": True}, headers=bearer("user-2")
        )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["features"]["soil_testing"] is True
