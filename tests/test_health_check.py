"""
Tests for the health endpoints: liveness and readiness.
"""
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from mobility_hub.core.circuit_breaker import get_qr_image_circuit_breaker, get_whatsapp_circuit_breaker
from mobility_hub.db.database import get_session_factory
from mobility_hub.main import app


async def _fail():
    raise RuntimeError("down")


# ============================================================================
# Liveness Probe - GET /health
# ============================================================================


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ============================================================================
# Readiness Probe - GET /health/ready
# ============================================================================


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        get_whatsapp_circuit_breaker()

        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert data["circuit_breakers"] == {"whatsapp": "closed"}

    @pytest.mark.unit
    async def test_open_breaker_degrades(self, test_client: httpx.AsyncClient) -> None:
        breaker = get_qr_image_circuit_breaker()
        for _ in range(breaker.config.failure_threshold):
            with pytest.raises(RuntimeError):
                await breaker.execute(_fail)

        response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["db"] == "ok"
        assert data["circuit_breakers"]["qr_image"] == "open"

    @pytest.mark.unit
    async def test_database_down_degrades(self, test_client: httpx.AsyncClient) -> None:
        broken_session = MagicMock()
        broken_session.__aenter__.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
        app.dependency_overrides[get_session_factory] = lambda: MagicMock(return_value=broken_session)

        response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["db"] == "error"
