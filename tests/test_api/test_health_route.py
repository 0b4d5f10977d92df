"""Tests for the health endpoint."""

from __future__ import annotations

import httpx
import pytest

from crystal_custody.api import deps
from crystal_custody.infrastructure.clock import ManualClock
from crystal_custody.main import create_app


class TestHealth:
    @pytest.mark.asyncio
    async def test_degraded_without_redis(self, db_engine) -> None:
        app = create_app()
        app.dependency_overrides[deps.get_clock] = lambda: ManualClock(321)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/health")

        body = resp.json()
        assert resp.status_code == 200
        assert body["database"] == "healthy"
        assert body["redis"].startswith("unhealthy")
        assert body["status"] == "degraded"
        assert body["block_height"] == 321
