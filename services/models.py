"""
Data models for the chat media bot pipeline.
"""
import base64
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class InboundMessage:
    """Inbound chat message as seen by the pipeline."""
    message_id: int
    chat_id: Optional[int]
    sender_id: int
    sender_name: str
    text: str
    timestamp: datetime
    has_media: bool = False
    media_kind: Optional[str] = None
    quoted: Optional["InboundMessage"] = None
    is_group: bool = False
    mentions_bot: bool = False
    from_bot_self: bool = False

    @property
    def has_quoted(self) -> bool:
        return self.quoted is not None

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            'message_id': self.message_id,
            'chat_id': self.chat_id,
            'sender_id': self.sender_id,
            'sender_name': self.sender_name,
            'text': self.text,
            'timestamp': self.timestamp.isoformat(),
            'has_media': self.has_media,
            'media_kind': self.media_kind,
            'quoted_message_id': self.quoted.message_id if self.quoted else None,
        }


@dataclass
class QueueEntry:
    """Inbound message wrapped with its enqueue time."""
    message: InboundMessage
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class Chat:
    """Chat context resolved from the transport."""
    id: int
    is_group: bool = False
    title: Optional[str] = None


@dataclass(frozen=True)
class Contact:
    """Message author resolved from the transport."""
    id: int
    name: str
    username: Optional[str] = None


class ChatState(str, Enum):
    """Presence indicator shown in a chat while a reply is prepared."""
    TYPING = "typing"
    RECORDING = "recording"
    CLEAR = "clear"


@dataclass(frozen=True)
class MediaPayload:
    """Media ready to be sent: base64 body plus MIME type."""
    mime_type: str
    data: str
    filename: Optional[str] = None

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: Optional[str], filename: Optional[str] = None) -> "MediaPayload":
        return cls(
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            data=base64.b64encode(raw).decode("ascii"),
            filename=filename,
        )

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def size(self) -> int:
        return len(self.raw)

    @property
    def kind(self) -> str:
        """Top-level MIME type, e.g. ``image`` or ``video``."""
        return self.mime_type.split("/", 1)[0].lower()


@dataclass(frozen=True)
class ImageCandidate:
    """Image search result before validation."""
    url: str
    title: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class ExtractionResult:
    """
    Outcome of resolving a shared link.

    Either ``urls`` holds one or more direct media URLs, or ``buffer`` holds
    the media bytes already fetched by the resolver.
    """
    urls: List[str] = field(default_factory=list)
    buffer: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def is_buffer(self) -> bool:
        return self.buffer is not None


@dataclass
class ItemOutcome:
    """Result of one sub-URL's download and send chain."""
    url: str
    success: bool
    reason: Optional[str] = None
    notify_user: bool = True


@dataclass
class MediaTransaction:
    """One media-link delivery attempt and its per-item outcomes."""
    tx_id: str
    source_url: str
    platform: Optional[str] = None
    sub_urls: List[str] = field(default_factory=list)
    outcomes: List[ItemOutcome] = field(default_factory=list)
    reason: Optional[str] = None
    details: Optional[str] = None
    should_notify: bool = False
    from_cache: bool = False

    @property
    def total_count(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def success(self) -> bool:
        return self.success_count > 0

    @property
    def partial_success(self) -> bool:
        return self.success and self.success_count < self.total_count

    def to_dict(self) -> dict:
        """Convert transaction summary to dictionary."""
        return {
            'tx_id': self.tx_id,
            'source_url': self.source_url,
            'platform': self.platform,
            'success': self.success,
            'partial_success': self.partial_success,
            'success_count': self.success_count,
            'total_count': self.total_count,
            'reason': self.reason,
            'from_cache': self.from_cache,
        }


@dataclass
class PipelineStats:
    """Running counters shared by the processor and the command handlers."""
    processed: int = 0
    commands_processed: int = 0
    ai_responses: int = 0
    errors: int = 0
    rate_limit_hits: int = 0
    dropped: int = 0
    media_delivered: int = 0
    images_sent: int = 0
    audio_sent: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    def to_dict(self) -> dict:
        """Convert counters to dictionary."""
        return {
            'processed': self.processed,
            'commands_processed': self.commands_processed,
            'ai_responses': self.ai_responses,
            'errors': self.errors,
            'rate_limit_hits': self.rate_limit_hits,
            'dropped': self.dropped,
            'media_delivered': self.media_delivered,
            'images_sent': self.images_sent,
            'audio_sent': self.audio_sent,
            'uptime_seconds': self.uptime_seconds,
        }
