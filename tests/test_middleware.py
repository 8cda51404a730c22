"""Middleware tests: request ID, rate limiting without Redis, CORS, error handling."""

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from marketpoints.points import adjustment_service


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_passes_through_without_redis(client: AsyncClient) -> None:
    """No Redis means no counters: requests succeed and carry no limit headers."""
    for _ in range(5):
        response = await client.get("/version")
        assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/health",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert "access-control-allow-origin" in response.headers


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_store_failure_returns_generic_500(
    client: AsyncClient, make_user, make_admin, auth_headers, monkeypatch
) -> None:
    """Driver errors inside a unit of work surface as a bare internal error."""
    user = await make_user()
    admin_id = await make_admin()

    async def _broken(*_args, **_kwargs):
        raise OperationalError("UPDATE ledger_accounts", {}, Exception("disk I/O error"))

    monkeypatch.setattr(adjustment_service, "admin_adjust", _broken)
    response = await client.put(
        "/api/v1/admin/points/adjust",
        json={"subject_id": user.subject_id, "subject_type": "user", "points_change": 5, "reason": "Bonus"},
        headers=auth_headers(admin_id, "admin"),
    )
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "internal_error"}
