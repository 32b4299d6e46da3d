"""Tests for the HTTP transport using httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from novelagent.config import RequestOptions, ServiceConfig
from novelagent.errors import MissingCredentialError, MissingImageError, RemoteServiceError
from novelagent.payloads import Endpoint, RequestPayload, build_generate_payload
from novelagent.transport import ImageServiceClient, extract_image

from conftest import png_bytes, zip_bytes


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _client(service: ServiceConfig, handler) -> ImageServiceClient:
    return ImageServiceClient(service, transport=httpx.MockTransport(handler))


class TestExtractImage:
    """Tests for response body unwrapping."""

    def test_first_image_entry(self):
        """Test that the first image in the archive is returned."""
        image = png_bytes()
        data = zip_bytes({"readme.txt": b"hi", "image_0.png": image, "image_1.png": b"other"})
        assert extract_image(data, Endpoint.GENERATE) == image

    def test_archive_without_image(self):
        """Test that an archive with no image raises MissingImageError."""
        with pytest.raises(MissingImageError, match="No image found"):
            extract_image(zip_bytes({"notes.txt": b"nothing"}), Endpoint.GENERATE)

    def test_generate_requires_archive(self):
        """Test that generation responses must be archives."""
        with pytest.raises(MissingImageError):
            extract_image(png_bytes(), Endpoint.GENERATE)

    def test_augment_raw_image(self):
        """Test that augment responses may be raw image bytes."""
        image = png_bytes()
        assert extract_image(image, Endpoint.AUGMENT) == image

    def test_augment_archive(self):
        """Test that augment responses may also be archives."""
        image = png_bytes()
        assert extract_image(zip_bytes({"out.png": image}), Endpoint.AUGMENT) == image


class TestImageServiceClient:
    """Tests for request sending."""

    def test_execute_success(self, service):
        """Test a successful generation round trip."""
        image = png_bytes()
        recorder = Recorder(httpx.Response(200, content=zip_bytes({"image_0.png": image})))
        payload = build_generate_payload(RequestOptions(prompt="1girl", seed=1))

        result = asyncio.run(_client(service, recorder).execute(payload))

        assert result == image
        (request,) = recorder.requests
        assert request.method == "POST"
        assert str(request.url) == service.generate_url
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["input"] == "1girl"
        assert body["parameters"]["seed"] == 1

    def test_augment_url(self, service):
        """Test that director payloads go to the augment endpoint."""
        recorder = Recorder(httpx.Response(200, content=png_bytes()))
        payload = RequestPayload(endpoint=Endpoint.AUGMENT, body={"req_type": "sketch", "image": "x"})
        asyncio.run(_client(service, recorder).execute(payload))
        assert str(recorder.requests[0].url) == service.augment_url

    def test_error_status(self, service):
        """Test that a non-2xx response raises once with status and body."""
        recorder = Recorder(httpx.Response(429, text="Too many requests " + "x" * 1000))
        payload = build_generate_payload(RequestOptions(prompt="1girl"))

        with pytest.raises(RemoteServiceError) as exc_info:
            asyncio.run(_client(service, recorder).execute(payload))

        error = exc_info.value
        assert error.status == 429
        assert error.service == "NovelAI API"
        assert error.body_excerpt.startswith("Too many requests")
        assert len(error.body_excerpt) == 500
        assert len(recorder.requests) == 1

    def test_director_error_names_service(self, service):
        """Test that augment failures name the Director API."""
        recorder = Recorder(httpx.Response(500, text="boom"))
        payload = RequestPayload(endpoint=Endpoint.AUGMENT, body={"req_type": "sketch", "image": "x"})
        with pytest.raises(RemoteServiceError, match="NovelAI Director API 500: boom"):
            asyncio.run(_client(service, recorder).execute(payload))

    def test_connection_error(self, service):
        """Test that network failures become RemoteServiceError without a status."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        payload = build_generate_payload(RequestOptions(prompt="1girl"))
        with pytest.raises(RemoteServiceError, match="unreachable") as exc_info:
            asyncio.run(_client(service, handler).execute(payload))
        assert exc_info.value.status is None

    def test_missing_key(self):
        """Test that no request is made without an API key."""
        recorder = Recorder(httpx.Response(200))
        payload = build_generate_payload(RequestOptions(prompt="1girl"))
        with pytest.raises(MissingCredentialError):
            asyncio.run(_client(ServiceConfig(), recorder).execute(payload))
        assert recorder.requests == []
