"""
QR Image Service - renders a QR code of a tel: link through an external
image service and returns a URL the Cloud API can fetch.
"""
import httpx

from mobility_hub.core.circuit_breaker import get_qr_image_circuit_breaker
from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import ExternalServiceException
from mobility_hub.core.logging import get_logger

logger = get_logger(__name__)


class QRImageService:
    """Thin client around the QR rendering endpoint"""

    def __init__(self, base_url: str | None = None, size: str | None = None):
        self.base_url = base_url or settings.QR_IMAGE_SERVICE_URL
        self.size = size or settings.QR_IMAGE_SIZE
        self._circuit_breaker = get_qr_image_circuit_breaker()

    async def render(self, data: str) -> str:
        """
        Render ``data`` and return the image URL.

        The GET doubles as a check: the URL is only handed to WhatsApp once
        the renderer answered it with an image.
        """
        request = httpx.Request("GET", self.base_url, params={"size": self.size, "data": data})
        image_url = str(request.url)

        async def _render() -> str:
            async with httpx.AsyncClient(timeout=settings.COLLABORATOR_TIMEOUT_SECONDS) as client:
                response = await client.get(image_url)
            if response.status_code != 200:
                raise ExternalServiceException.from_response("qr_image", "render", response)
            content_type = response.headers.get("content-type", "")
            if not content_type.startswith("image/"):
                raise ExternalServiceException(
                    service_name="qr_image",
                    message="QR renderer did not return an image",
                    details={"content_type": content_type},
                )
            return image_url

        return await self._circuit_breaker.execute(_render)
