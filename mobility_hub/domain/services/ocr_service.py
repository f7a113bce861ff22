"""
OCR Service - extracts vehicle fields from a logbook / certificate photo.

The OCR backend fetches the media itself from the WhatsApp media id, so no
binary passes through this service.
"""
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from mobility_hub.core.circuit_breaker import get_ocr_circuit_breaker
from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import ExternalServiceException
from mobility_hub.core.logging import get_logger

logger = get_logger(__name__)


class ExtractedVehicle(BaseModel):
    """Fields read from the document. Only the plate is mandatory."""

    model_config = ConfigDict(protected_namespaces=(), extra="ignore")

    plate: str
    make: Optional[str] = None
    model: Optional[str] = None
    model_year: Optional[int] = None
    vin: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_policy: Optional[str] = None
    insurance_expiry: Optional[str] = None

    @field_validator("plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        plate = "".join(v.split()).upper()
        if not plate:
            raise ValueError("plate is empty")
        return plate


class OCRService:
    def __init__(self, base_url: str | None = None, token: str | None = None):
        self.base_url = base_url or settings.OCR_SERVICE_URL
        self.token = token if token is not None else settings.OCR_SERVICE_TOKEN
        self._circuit_breaker = get_ocr_circuit_breaker()

    async def extract_vehicle(self, media_id: str, mime_type: Optional[str] = None) -> ExtractedVehicle:
        """
        Raises:
            ExternalServiceException: service down, bad answer, or no plate found
            CircuitBreakerOpenError: too many recent failures
        """
        if not self.base_url:
            raise ExternalServiceException(
                service_name="ocr",
                message="OCR service is not configured",
            )

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {"media_id": media_id, "mime_type": mime_type, "document_type": "vehicle"}

        async def _extract() -> dict:
            async with httpx.AsyncClient(timeout=settings.COLLABORATOR_TIMEOUT_SECONDS) as client:
                response = await client.post(self.base_url, json=payload, headers=headers)
            if response.status_code != 200:
                raise ExternalServiceException.from_response("ocr", "extract", response)
            try:
                return response.json()
            except ValueError:
                raise ExternalServiceException(
                    service_name="ocr",
                    message="OCR service returned an unreadable answer",
                    details={"media_id": media_id, "content_type": response.headers.get("content-type")},
                )

        body = await self._circuit_breaker.execute(_extract)
        fields = body.get("fields", body) if isinstance(body, dict) else {}

        try:
            return ExtractedVehicle.model_validate(fields)
        except ValidationError as e:
            # a readable answer without a plate is not a service failure
            logger.info(
                "OCR result has no usable plate",
                extra_data={"media_id": media_id, "errors": e.error_count()},
            )
            raise ExternalServiceException(
                service_name="ocr",
                message="No plate number found in document",
                details={"media_id": media_id},
            )
