"""
Unit tests for DownloadService.
"""
import asyncio

import aiohttp
import pytest

from services.download_service import DownloadService, build_headers
from services.errors import DownloadFailedError, InvalidMediaTypeError, OversizeMediaError, truncate_url
from services.models import DEFAULT_MIME_TYPE


URL = "https://cdn.example.com/video.mp4"


@pytest.fixture
def make_service(session):
    def _make(**kwargs):
        kwargs.setdefault("max_file_size", 100)
        kwargs.setdefault("max_retries", 3)
        kwargs.setdefault("retry_delay_seconds", 0)
        return DownloadService(session, **kwargs)
    return _make


@pytest.mark.unit
class TestDownloadService:
    """Test cases for DownloadService."""

    async def test_successful_download(self, session, make_response, make_service):
        """Test that the body is returned as a base64 payload with its MIME type."""
        session.add("GET", URL, make_response(body=b"videodata", headers={"Content-Type": "video/mp4"}))

        payload = await make_service().download(URL, tx_id="tx1")

        assert payload.raw == b"videodata"
        assert payload.mime_type == "video/mp4"

    async def test_missing_content_type_uses_default(self, session, make_response, make_service):
        """Test default MIME type."""
        session.add("GET", URL, make_response(body=b"data"))

        payload = await make_service().download(URL)

        assert payload.mime_type == DEFAULT_MIME_TYPE

    async def test_advertised_oversize_fails_without_body(self, session, make_response, make_service):
        """Test that an oversize Content-Length fails at once without reading the body or retrying."""
        response = make_response(body=b"x" * 10, content_length=500)
        session.add("GET", URL, response)

        with pytest.raises(OversizeMediaError) as exc_info:
            await make_service().download(URL)

        assert exc_info.value.size == 500
        assert response.chunks_read == 0
        assert len(session.calls_to("GET", URL)) == 1

    async def test_streamed_oversize_aborts(self, session, make_response, make_service):
        """Test that a body exceeding the ceiling mid-stream aborts the download."""
        response = make_response(body=b"x" * 40, content_length=None, chunk_size=8)
        session.add("GET", URL, response)

        with pytest.raises(OversizeMediaError):
            await make_service(max_file_size=20).download(URL)

        assert response.chunks_read == 3
        assert len(session.calls) == 1

    async def test_invalid_type_not_retried(self, session, make_response, make_service):
        """Test that a wrong content type fails on the first attempt."""
        session.add("GET", URL, make_response(body=b"<html>", headers={"Content-Type": "text/html"}))

        with pytest.raises(InvalidMediaTypeError):
            await make_service(expected_prefix="image/").download(URL)

        assert len(session.calls) == 1

    async def test_transient_failure_then_success(self, session, make_response, make_service):
        """Test that a timeout followed by a good response succeeds."""
        session.add(
            "GET", URL,
            asyncio.TimeoutError(),
            make_response(status=502),
            make_response(body=b"ok", headers={"Content-Type": "image/gif"})
        )

        payload = await make_service().download(URL)

        assert payload.raw == b"ok"
        assert len(session.calls) == 3

    async def test_empty_body_is_retried(self, session, make_response, make_service):
        """Test that an empty response counts as a transient failure."""
        session.add(
            "GET", URL,
            make_response(body=b""),
            make_response(body=b"data", headers={"Content-Type": "image/png"})
        )

        payload = await make_service().download(URL)

        assert payload.raw == b"data"
        assert len(session.calls) == 2

    async def test_exhausted_retries(self, session, make_service):
        """Test that MAX_RETRIES transient failures end in DownloadFailedError."""
        session.add("GET", URL, aiohttp.ClientConnectionError("reset"))

        with pytest.raises(DownloadFailedError) as exc_info:
            await make_service(max_retries=3).download(URL)

        assert exc_info.value.attempts == 3
        assert len(session.calls) == 3

    async def test_empty_url(self, make_service):
        """Test that an empty URL is rejected without a request."""
        with pytest.raises(DownloadFailedError):
            await make_service().download("")

    async def test_bot_token_never_logged(self, session, make_service, caplog):
        """Test that a Telegram file URL does not leak the bot token into logs or errors."""
        # Arrange
        secret = "AAHsecretTokenValue-x"
        url = f"https://api.telegram.org/file/bot123456:{secret}/photos/file_1.jpg"
        session.add("GET", url, aiohttp.ClientConnectionError(f"Cannot connect to {url}"))
        caplog.set_level("DEBUG", logger="services.download_service")

        # Act
        with pytest.raises(DownloadFailedError) as exc_info:
            await make_service().download(url)

        # Assert
        assert secret not in str(exc_info.value)
        assert caplog.records
        for record in caplog.records:
            assert secret not in record.getMessage()
            assert secret not in str(getattr(record, "url", ""))
            assert secret not in str(getattr(record, "error", ""))

    def test_truncate_url_redacts_token(self):
        """Test that the token segment is masked before shortening."""
        shortened = truncate_url("https://api.telegram.org/file/bot123456:AAHsecret/photos/a.jpg")

        assert "AAHsecret" not in shortened
        assert shortened.startswith("https://api.telegram.org/file/bot<redacted>")

    def test_platform_referer(self):
        """Test that TikTok CDNs get a Referer header."""
        assert build_headers("https://v16.tiktokcdn.com/a.mp4")["Referer"] == "https://www.tiktok.com/"
        assert "Referer" not in build_headers(URL)
