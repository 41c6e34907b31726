"""Configuration module for loading and validating environment variables."""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Configuration class for bot settings loaded from environment variables."""

    # Telegram
    bot_token: str
    admin_ids: List[int]
    debug_mode: bool

    # OpenAI
    openai_api_key: str
    openai_base_url: Optional[str]
    openai_model: str
    max_tokens: int
    ai_history_limit: int

    # Database
    db_path: str

    # Queue and rate limiting
    queue_poll_interval_seconds: float
    rate_limit_window_seconds: float
    rate_limit_max_requests: int

    # Caches
    media_cache_ttl_seconds: float
    media_cache_max_size: int
    image_cache_ttl_seconds: float
    image_cache_max_size: int
    cache_flush_interval_seconds: float
    cache_sweep_interval_seconds: float

    # Pipeline stages
    extraction_concurrency: int
    extraction_interval_seconds: float
    download_concurrency: int
    download_interval_seconds: float
    send_concurrency: int
    send_interval_seconds: float

    # Timeouts, retries and ceilings
    extraction_timeout_seconds: float
    download_timeout_seconds: float
    max_retries: int
    retry_delay_seconds: float
    max_file_size_mb: int
    max_image_size_mb: int
    max_media_items: int

    # External services
    webhook_urls: List[str] = field(default_factory=list)
    image_search_url: Optional[str] = None
    tts_api_url: Optional[str] = None
    tts_voice: str = "en-US-AvaMultilingualNeural"
    music_api_url: Optional[str] = None
    song_selection_timeout_seconds: float = 60.0

    # Voice echo of streamed bot messages
    voice_reply_senders: List[str] = field(default_factory=list)
    message_settle_interval_seconds: float = 0.5
    message_settle_max_attempts: int = 100
    message_settle_timeout_seconds: float = 30.0

    @property
    def max_file_size(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def max_image_size(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Returns:
            Config: Configuration instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        # Load .env file if it exists
        load_dotenv()

        bot_token = cls._get_required_env("BOT_TOKEN")
        openai_api_key = cls._get_required_env("OPENAI_API_KEY")

        config = cls(
            bot_token=bot_token,
            admin_ids=[int(value) for value in cls._get_list_env("ADMIN_IDS", int_values=True)],
            debug_mode=cls._get_bool_env("DEBUG_MODE", default=False),
            openai_api_key=openai_api_key,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            max_tokens=cls._get_int_env("MAX_TOKENS", default=1000),
            ai_history_limit=cls._get_int_env("AI_HISTORY_LIMIT", default=20),
            db_path=os.getenv("DB_PATH", "data/bot.db"),
            queue_poll_interval_seconds=cls._get_float_env("QUEUE_POLL_INTERVAL_SECONDS", default=0.1),
            rate_limit_window_seconds=cls._get_float_env("RATE_LIMIT_WINDOW_SECONDS", default=60.0),
            rate_limit_max_requests=cls._get_int_env("RATE_LIMIT_MAX_REQUESTS", default=5),
            media_cache_ttl_seconds=cls._get_float_env("MEDIA_CACHE_TTL_SECONDS", default=300.0),
            media_cache_max_size=cls._get_int_env("MEDIA_CACHE_MAX_SIZE", default=100),
            image_cache_ttl_seconds=cls._get_float_env("IMAGE_CACHE_TTL_SECONDS", default=86400.0),
            image_cache_max_size=cls._get_int_env("IMAGE_CACHE_MAX_SIZE", default=1000),
            cache_flush_interval_seconds=cls._get_float_env("CACHE_FLUSH_INTERVAL_SECONDS", default=3600.0),
            cache_sweep_interval_seconds=cls._get_float_env("CACHE_SWEEP_INTERVAL_SECONDS", default=300.0),
            extraction_concurrency=cls._get_int_env("EXTRACTION_CONCURRENCY", default=3),
            extraction_interval_seconds=cls._get_float_env("EXTRACTION_INTERVAL_SECONDS", default=0.5),
            download_concurrency=cls._get_int_env("DOWNLOAD_CONCURRENCY", default=5),
            download_interval_seconds=cls._get_float_env("DOWNLOAD_INTERVAL_SECONDS", default=0.5),
            send_concurrency=cls._get_int_env("SEND_CONCURRENCY", default=2),
            send_interval_seconds=cls._get_float_env("SEND_INTERVAL_SECONDS", default=1.0),
            extraction_timeout_seconds=cls._get_float_env("EXTRACTION_TIMEOUT_SECONDS", default=60.0),
            download_timeout_seconds=cls._get_float_env("DOWNLOAD_TIMEOUT_SECONDS", default=60.0),
            max_retries=cls._get_int_env("MAX_RETRIES", default=3),
            retry_delay_seconds=cls._get_float_env("RETRY_DELAY_SECONDS", default=1.0),
            max_file_size_mb=cls._get_int_env("MAX_FILE_SIZE_MB", default=30),
            max_image_size_mb=cls._get_int_env("MAX_IMAGE_SIZE_MB", default=5),
            max_media_items=cls._get_int_env("MAX_MEDIA_ITEMS", default=5),
            webhook_urls=cls._get_list_env("WEBHOOK_URLS"),
            image_search_url=os.getenv("IMAGE_SEARCH_URL") or None,
            tts_api_url=os.getenv("TTS_API_URL") or None,
            tts_voice=os.getenv("TTS_VOICE", "en-US-AvaMultilingualNeural"),
            music_api_url=os.getenv("MUSIC_API_URL") or None,
            song_selection_timeout_seconds=cls._get_float_env("SONG_SELECTION_TIMEOUT_SECONDS", default=60.0),
            voice_reply_senders=cls._get_list_env("VOICE_REPLY_SENDERS"),
            message_settle_interval_seconds=cls._get_float_env("MESSAGE_SETTLE_INTERVAL_SECONDS", default=0.5),
            message_settle_max_attempts=cls._get_int_env("MESSAGE_SETTLE_MAX_ATTEMPTS", default=100),
            message_settle_timeout_seconds=cls._get_float_env("MESSAGE_SETTLE_TIMEOUT_SECONDS", default=30.0),
        )

        # Validate positive values
        for key in (
            "max_tokens",
            "ai_history_limit",
            "queue_poll_interval_seconds",
            "rate_limit_window_seconds",
            "rate_limit_max_requests",
            "media_cache_ttl_seconds",
            "media_cache_max_size",
            "image_cache_ttl_seconds",
            "image_cache_max_size",
            "cache_flush_interval_seconds",
            "cache_sweep_interval_seconds",
            "extraction_concurrency",
            "download_concurrency",
            "send_concurrency",
            "extraction_timeout_seconds",
            "download_timeout_seconds",
            "max_retries",
            "max_file_size_mb",
            "max_image_size_mb",
            "max_media_items",
            "song_selection_timeout_seconds",
            "message_settle_interval_seconds",
            "message_settle_max_attempts",
            "message_settle_timeout_seconds",
        ):
            cls._validate_positive(key.upper(), getattr(config, key))

        # Pacing intervals and backoff may be zero
        for key in (
            "extraction_interval_seconds",
            "download_interval_seconds",
            "send_interval_seconds",
            "retry_delay_seconds",
        ):
            cls._validate_non_negative(key.upper(), getattr(config, key))

        return config

    @staticmethod
    def _get_required_env(key: str) -> str:
        """
        Get required environment variable.

        Args:
            key: Environment variable name

        Returns:
            str: Environment variable value

        Raises:
            ValueError: If environment variable is not set or empty
        """
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable '{key}' is not set")
        return value

    @staticmethod
    def _get_int_env(key: str, default: int) -> int:
        """
        Get optional integer environment variable with default.

        Args:
            key: Environment variable name
            default: Default value if not set

        Returns:
            int: Environment variable value as integer or default

        Raises:
            ValueError: If environment variable is set but not a valid integer
        """
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' must be a valid integer, got: {value}")

    @staticmethod
    def _get_float_env(key: str, default: float) -> float:
        """
        Get optional float environment variable with default.

        Raises:
            ValueError: If environment variable is set but not a valid number
        """
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' must be a valid number, got: {value}")

    @staticmethod
    def _get_bool_env(key: str, default: bool) -> bool:
        """
        Get optional boolean environment variable with default.

        Args:
            key: Environment variable name
            default: Default value if not set

        Returns:
            bool: Environment variable value as boolean or default
        """
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    @staticmethod
    def _get_list_env(key: str, int_values: bool = False) -> List[str]:
        """
        Get comma-separated environment variable as a list.

        Args:
            key: Environment variable name
            int_values: Require every item to be an integer

        Returns:
            List of non-empty, stripped items

        Raises:
            ValueError: If ``int_values`` is set and an item is not an integer
        """
        value = os.getenv(key, "")
        items = [item.strip() for item in value.split(",") if item.strip()]
        if int_values:
            for item in items:
                if not item.lstrip("-").isdigit():
                    raise ValueError(f"Environment variable '{key}' must contain integers, got: {item}")
        return items

    @staticmethod
    def _validate_positive(key: str, value: float) -> None:
        """
        Validate that a value is positive.

        Args:
            key: Parameter name for error message
            value: Value to validate

        Raises:
            ValueError: If value is not positive
        """
        if value <= 0:
            raise ValueError(f"Parameter '{key}' must be positive, got: {value}")

    @staticmethod
    def _validate_non_negative(key: str, value: float) -> None:
        if value < 0:
            raise ValueError(f"Parameter '{key}' must not be negative, got: {value}")
