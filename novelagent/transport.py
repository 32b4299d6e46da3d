"""HTTP transport for the NovelAI image endpoints.

One POST per call, bearer-token auth, JSON body. Failures are reported once
and never retried. Successful generation responses are ZIP archives holding
the image; the augment endpoint may answer with either an archive or the raw
image bytes.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Any, Mapping, Optional

import httpx

from novelagent.config import ServiceConfig
from novelagent.errors import MissingImageError, RemoteServiceError
from novelagent.payloads import Endpoint, RequestPayload

logger = logging.getLogger("novelagent.transport")

BODY_EXCERPT_CHARS = 500
IMAGE_SUFFIXES = (".png", ".webp", ".jpg", ".jpeg")

SERVICE_NAMES = {
    Endpoint.GENERATE: "NovelAI API",
    Endpoint.AUGMENT: "NovelAI Director API",
}


def extract_image(data: bytes, endpoint: Endpoint) -> bytes:
    """Pull the image out of a response body."""
    if not zipfile.is_zipfile(io.BytesIO(data)):
        if endpoint is Endpoint.AUGMENT:
            logger.debug("Augment response is not an archive; using raw bytes")
            return data
        raise MissingImageError("API response is not an image archive.")

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for info in archive.infolist():
            if not info.is_dir() and info.filename.lower().endswith(IMAGE_SUFFIXES):
                logger.debug("Extracted %s (%d bytes) from response archive", info.filename, info.file_size)
                return archive.read(info)
    raise MissingImageError("No image found in API response archive.")


class ImageServiceClient:
    """Sends assembled payloads to the generation and augment endpoints."""

    def __init__(
        self,
        service: ServiceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service = service
        self._transport = transport

    def url_for(self, endpoint: Endpoint) -> str:
        if endpoint is Endpoint.GENERATE:
            return self.service.generate_url
        return self.service.augment_url

    async def send(self, endpoint: Endpoint, payload: Mapping[str, Any]) -> bytes:
        """POST ``payload`` and return the raw response body."""
        service_name = SERVICE_NAMES[endpoint]
        headers = {
            "Authorization": f"Bearer {self.service.require_api_key()}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.service.request_timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(self.url_for(endpoint), json=dict(payload), headers=headers)
        except httpx.RequestError as exc:
            raise RemoteServiceError(service_name, None, str(exc)[:BODY_EXCERPT_CHARS]) from exc

        if not response.is_success:
            raise RemoteServiceError(
                service_name,
                response.status_code,
                response.text[:BODY_EXCERPT_CHARS],
            )
        logger.debug("%s answered %d (%d bytes)", service_name, response.status_code, len(response.content))
        return response.content

    async def execute(self, payload: RequestPayload) -> bytes:
        """Send ``payload`` and return the image it produced."""
        data = await self.send(payload.endpoint, payload.to_wire())
        return extract_image(data, payload.endpoint)
