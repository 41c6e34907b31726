"""
Error kinds raised inside the message and media pipeline.

Every error carries a ``user_message`` suitable for a chat reply and a
``notify_user`` flag telling the absorbing layer whether the user should
see it at all.
"""
import re
from typing import Optional


# Telegram file URLs carry the bot token as a /bot<token>/ path segment.
_BOT_TOKEN = re.compile(r"/bot\d+:[\w-]+")


def redact_secrets(text: Optional[str]) -> str:
    """Mask bot tokens embedded in URLs or error text."""
    if not text:
        return ""
    return _BOT_TOKEN.sub("/bot<redacted>", text)


def truncate_url(url: Optional[str], limit: int = 50) -> str:
    """Shorten a URL for log lines and error messages."""
    if not url:
        return "undefined"
    url = redact_secrets(url)
    if len(url) <= limit:
        return url
    return f"{url[:limit]}..."


class PipelineError(Exception):
    """Base class for pipeline failures."""

    user_message = "Processing error"
    notify_user = True
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class RateLimitedError(PipelineError):
    user_message = "You're sending messages too quickly! Please wait a moment."


class UnsupportedMediaError(PipelineError):
    user_message = "Unsupported media type"


class OversizeMediaError(PipelineError):
    user_message = "File too large"

    def __init__(self, size: Optional[int] = None, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        if size is not None and limit is not None:
            super().__init__(f"File too large: {size} bytes (max: {limit} bytes)")
        else:
            super().__init__()


class TooManyMediaItemsError(PipelineError):
    user_message = "Too many media items"

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Too many media items ({count}, max: {limit})")


class ExtractionError(PipelineError):
    """Resolver failure, tagged with platform and truncated URL."""

    user_message = "Processing error"

    def __init__(self, platform: str, url: str, message: str):
        self.platform = platform
        self.url = truncate_url(url)
        super().__init__(f"[{platform}] {self.url}: {message}")


class ExtractionTimeoutError(ExtractionError):

    def __init__(self, platform: str, url: str, timeout: float):
        self.timeout = timeout
        super().__init__(platform, url, f"Extraction timed out after {timeout:.0f}s")


class TransientDownloadError(PipelineError):
    """Download failure that is worth another attempt."""

    retryable = True


class InvalidMediaTypeError(PipelineError):
    user_message = "Invalid media type"

    def __init__(self, content_type: Optional[str]):
        self.content_type = content_type
        super().__init__(f"Invalid content type: {content_type}")


class ProcessingError(PipelineError):
    user_message = "Processing error"


class DownloadFailedError(ProcessingError):

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]):
        self.url = truncate_url(url)
        self.attempts = attempts
        super().__init__(
            f"Failed to download media after {attempts} attempts: {redact_secrets(str(last_error))}"
        )
