"""
Tests for the QR image and OCR HTTP clients

httpx.AsyncClient is swapped for one backed by httpx.MockTransport, so no
request leaves the process.
"""
import json
from unittest.mock import patch

import httpx
import pytest

from mobility_hub.core.exceptions import CircuitBreakerOpenError, ExternalServiceException
from mobility_hub.domain.services.ocr_service import OCRService
from mobility_hub.domain.services.qr_image_service import QRImageService

_RealAsyncClient = httpx.AsyncClient


def _mock_client(handler, seen: list):
    def recording_handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    def factory(*args, **kwargs):
        kwargs.pop("transport", None)
        return _RealAsyncClient(*args, transport=httpx.MockTransport(recording_handler), **kwargs)

    return patch("httpx.AsyncClient", factory)


class TestQRImageService:

    @pytest.mark.unit
    async def test_returns_url_after_checking_image(self) -> None:
        seen = []
        with _mock_client(lambda r: httpx.Response(200, headers={"content-type": "image/png"}, content=b"png"), seen):
            url = await QRImageService(base_url="https://qr.example/create", size="300x300").render(
                "tel:*182*1*1*0788123456%23"
            )

        assert url == str(seen[0].url)
        assert seen[0].url.params["size"] == "300x300"
        assert seen[0].url.params["data"] == "tel:*182*1*1*0788123456%23"

    @pytest.mark.unit
    async def test_non_image_answer_fails(self) -> None:
        seen = []
        with _mock_client(lambda r: httpx.Response(200, headers={"content-type": "text/html"}, text="<html>"), seen):
            with pytest.raises(ExternalServiceException):
                await QRImageService(base_url="https://qr.example/create").render("tel:x")

    @pytest.mark.unit
    async def test_error_status_fails(self) -> None:
        seen = []
        with _mock_client(lambda r: httpx.Response(502, text="bad gateway"), seen):
            with pytest.raises(ExternalServiceException) as exc_info:
                await QRImageService(base_url="https://qr.example/create").render("tel:x")

        assert exc_info.value.details["status_code"] == 502

    @pytest.mark.unit
    async def test_breaker_opens_after_repeated_failures(self) -> None:
        seen = []
        service = QRImageService(base_url="https://qr.example/create")
        with _mock_client(lambda r: httpx.Response(500), seen):
            for _ in range(service._circuit_breaker.config.failure_threshold):
                with pytest.raises(ExternalServiceException):
                    await service.render("tel:x")

            calls_before = len(seen)
            with pytest.raises(CircuitBreakerOpenError):
                await service.render("tel:x")

        assert len(seen) == calls_before


class TestOCRService:

    @pytest.mark.unit
    async def test_extracts_fields(self) -> None:
        seen = []
        answer = {"fields": {"plate": "rab 123 a", "make": "Toyota", "model_year": 2015, "chassis": "ignored"}}
        with _mock_client(lambda r: httpx.Response(200, json=answer), seen):
            vehicle = await OCRService(base_url="https://ocr.example/extract", token="secret").extract_vehicle(
                "media-1", "image/jpeg"
            )

        assert vehicle.plate == "RAB123A"
        assert vehicle.make == "Toyota"
        assert vehicle.model_year == 2015
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].content) == {
            "media_id": "media-1",
            "mime_type": "image/jpeg",
            "document_type": "vehicle",
        }

    @pytest.mark.unit
    async def test_flat_answer_is_accepted(self) -> None:
        seen = []
        with _mock_client(lambda r: httpx.Response(200, json={"plate": "RAC001B"}), seen):
            vehicle = await OCRService(base_url="https://ocr.example/extract").extract_vehicle("media-2")

        assert vehicle.plate == "RAC001B"

    @pytest.mark.unit
    async def test_no_plate_is_an_error(self) -> None:
        seen = []
        with _mock_client(lambda r: httpx.Response(200, json={"fields": {"make": "Toyota"}}), seen):
            with pytest.raises(ExternalServiceException) as exc_info:
                await OCRService(base_url="https://ocr.example/extract").extract_vehicle("media-3")

        assert exc_info.value.message == "No plate number found in document"

    @pytest.mark.unit
    async def test_non_json_answer_is_an_error(self) -> None:
        seen = []
        maintenance_page = httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})
        with _mock_client(lambda r: maintenance_page, seen):
            with pytest.raises(ExternalServiceException) as exc_info:
                await OCRService(base_url="https://ocr.example/extract").extract_vehicle("media-5")

        assert exc_info.value.message == "OCR service returned an unreadable answer"
        assert exc_info.value.details["content_type"] == "text/html"

    @pytest.mark.unit
    async def test_unconfigured_service(self, monkeypatch) -> None:
        from mobility_hub.core.config import settings

        monkeypatch.setattr(settings, "OCR_SERVICE_URL", "")
        with pytest.raises(ExternalServiceException):
            await OCRService().extract_vehicle("media-4")
