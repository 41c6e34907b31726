"""
Unit tests for DeliveryPipeline.
"""
import pytest

from services.delivery_pipeline import DeliveryPipeline, create_tx_id
from services.errors import DownloadFailedError, OversizeMediaError
from services.extraction_service import ExtractionService
from services.models import Chat, ChatState, ExtractionResult, MediaPayload, PipelineStats
from utils.dedup_cache import DedupCache
from utils.stage_queue import StageQueue


TIKTOK_URL = "https://vm.tiktok.com/ZMabc123/"
SOUNDCLOUD_URL = "https://soundcloud.com/artist/track"


class StubResolver:
    def __init__(self, platform, result):
        self.platform = platform
        self.result = result
        self.calls = 0

    async def resolve(self, url):
        self.calls += 1
        return self.result


class StubDownloader:
    """Download stand-in: maps URL to payload or exception."""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.calls = []

    async def download(self, url, tx_id=None):
        self.calls.append(url)
        outcome = self.outcomes.get(url)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or MediaPayload.from_bytes(url.encode(), "image/jpeg")


@pytest.fixture
def chat():
    return Chat(id=100, is_group=True)


@pytest.fixture
def stats():
    return PipelineStats()


@pytest.fixture
def make_pipeline(transport, stats):
    def _make(resolvers, downloader=None, max_media_items=5):
        pipeline = DeliveryPipeline(
            transport=transport,
            extraction_service=ExtractionService(resolvers),
            download_service=downloader or StubDownloader(),
            media_cache=DedupCache("media", ttl_seconds=300, max_size=100),
            extraction_stage=StageQueue("extract", 3),
            download_stage=StageQueue("download", 5),
            send_stage=StageQueue("send", 2),
            max_media_items=max_media_items,
            stats=stats
        )
        return pipeline
    return _make


def gallery(count):
    return ExtractionResult(urls=[f"https://cdn.example.com/{index}.jpg" for index in range(count)])


@pytest.mark.unit
class TestDeliveryPipeline:
    """Test cases for DeliveryPipeline."""

    def test_tx_ids_are_unique(self):
        """Test transaction id generation."""
        ids = {create_tx_id() for _ in range(500)}

        assert len(ids) == 500

    async def test_message_without_link_is_ignored(self, make_pipeline, make_message, chat, transport):
        """Test that plain text produces no transaction."""
        pipeline = make_pipeline({})

        assert await pipeline.handle_message(make_message("hi there"), chat) is None
        assert transport.replies == []

    async def test_partial_success(self, make_pipeline, make_message, chat, transport, stats):
        """Test that one failed item out of three still counts as success."""
        resolver = StubResolver("tiktok", gallery(3))
        downloader = StubDownloader({
            "https://cdn.example.com/1.jpg": DownloadFailedError("https://cdn.example.com/1.jpg", 3, None)
        })
        pipeline = make_pipeline({"tiktok": resolver}, downloader)

        transaction = await pipeline.handle_message(make_message(f"check {TIKTOK_URL}"), chat)

        assert transaction.success is True
        assert transaction.partial_success is True
        assert (transaction.success_count, transaction.total_count) == (2, 3)
        assert len(transport.replies) == 2
        assert transport.texts() == []
        assert stats.media_delivered == 2

    async def test_presence_set_and_cleared(self, make_pipeline, make_message, chat, transport):
        """Test that typing is shown while working and cleared afterwards."""
        pipeline = make_pipeline({"tiktok": StubResolver("tiktok", gallery(1))})

        await pipeline.handle_message(make_message(TIKTOK_URL), chat)

        assert transport.states[0] == (100, ChatState.TYPING)
        assert transport.states[-1] == (100, ChatState.CLEAR)

    async def test_too_many_items(self, make_pipeline, make_message, chat, transport):
        """Test that exceeding MAX_MEDIA_ITEMS fails the transaction before any download."""
        downloader = StubDownloader()
        pipeline = make_pipeline({"tiktok": StubResolver("tiktok", gallery(6))}, downloader)

        transaction = await pipeline.handle_message(make_message(TIKTOK_URL), chat)

        assert transaction.success is False
        assert transaction.reason == "Too many media items"
        assert downloader.calls == []
        assert transport.texts() == ["Failed to process media: Too many media items"]

    async def test_unsupported_link(self, make_pipeline, make_message):
        """Test that an unrecognised link is a notifiable failure."""
        pipeline = make_pipeline({})

        transaction = await pipeline.deliver("https://example.com/clip.mp4", make_message())

        assert transaction.success is False
        assert transaction.reason == "Unsupported media type"
        assert transaction.should_notify is True

    async def test_cache_hit_skips_extraction_and_download(self, make_pipeline, make_message, chat, transport):
        """Test that a repeated link is served from cache."""
        resolver = StubResolver("tiktok", gallery(2))
        downloader = StubDownloader()
        pipeline = make_pipeline({"tiktok": resolver}, downloader)

        await pipeline.handle_message(make_message(TIKTOK_URL), chat)
        transaction = await pipeline.handle_message(make_message(TIKTOK_URL), chat)

        assert transaction.from_cache is True
        assert transaction.success_count == 2
        assert resolver.calls == 1
        assert len(downloader.calls) == 2
        assert len(transport.replies) == 4

    async def test_sub_url_cache_shared_between_links(self, make_pipeline, make_message, chat):
        """Test that a direct URL already downloaded is not fetched again."""
        downloader = StubDownloader()
        shared = ExtractionResult(urls=["https://cdn.example.com/shared.mp4"])
        pipeline = make_pipeline({"tiktok": StubResolver("tiktok", shared)}, downloader)

        await pipeline.handle_message(make_message(TIKTOK_URL), chat)
        await pipeline.handle_message(make_message("https://vm.tiktok.com/ZMother/"), chat)

        assert downloader.calls == ["https://cdn.example.com/shared.mp4"]

    async def test_oversize_reason_wins(self, make_pipeline, make_message, chat, transport):
        """Test that an oversize item makes the failure reason 'File too large'."""
        downloader = StubDownloader({
            "https://cdn.example.com/0.jpg": DownloadFailedError("https://cdn.example.com/0.jpg", 3, None),
            "https://cdn.example.com/1.jpg": OversizeMediaError(50, 10),
        })
        pipeline = make_pipeline({"tiktok": StubResolver("tiktok", gallery(2))}, downloader)

        transaction = await pipeline.handle_message(make_message(TIKTOK_URL), chat)

        assert transaction.success is False
        assert transaction.reason == "File too large"
        assert transport.texts() == ["Failed to process media: File too large"]

    async def test_send_failure_not_notified(self, make_pipeline, make_message, chat, transport):
        """Test that transport errors fail silently."""
        transport.reply_error = RuntimeError("chat gone")
        pipeline = make_pipeline({"tiktok": StubResolver("tiktok", gallery(1))})

        transaction = await pipeline.handle_message(make_message(TIKTOK_URL), chat)

        assert transaction.success is False
        assert transaction.should_notify is False

    async def test_buffered_result(self, make_pipeline, make_message, chat, transport):
        """Test that resolver-fetched bytes are sent without a download."""
        downloader = StubDownloader()
        resolver = StubResolver("soundcloud", ExtractionResult(buffer=b"mp3", mime_type="audio/mpeg"))
        pipeline = make_pipeline({"soundcloud": resolver}, downloader)

        transaction = await pipeline.handle_message(make_message(SOUNDCLOUD_URL), chat)

        assert transaction.success is True
        assert downloader.calls == []
        assert transport.replies[0].content.mime_type == "audio/mpeg"
        assert transport.replies[0].content.raw == b"mp3"
