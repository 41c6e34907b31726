"""
Main entry point for the chat media bot.

This module initializes all components and starts the bot.
"""
import asyncio
import logging
import sys

import aiohttp
from aiogram import Bot, Dispatcher

from bot.commands import GeneralCommands, MediaCommands, register_commands
from bot.routers.message_router import router as message_router
from bot.transport import TelegramTransport
from config.settings import Config
from database.connection import DatabaseConnection
from database.repository import CommandRepository, ConfigRepository
from openai_client.client import OpenAIClient
from services.ai_service import AIService
from services.command_service import CommandRegistry, CommandService
from services.delivery_pipeline import DeliveryPipeline
from services.download_service import DownloadService
from services.extraction_service import ExtractionService
from services.extractors import build_default_resolvers
from services.image_search_service import ImageSearchClient, ImageSearchService
from services.message_processor import MessageProcessor, MessageQueue
from services.models import PipelineStats
from services.music_service import MusicClient
from services.tts_service import TTSClient
from services.voice_echo_service import VoiceEchoService
from services.webhook_service import WebhookService
from utils.debounce_manager import DebounceManager
from utils.dedup_cache import DedupCache
from utils.media_validator import MediaValidator
from utils.rate_limiter import RateLimiter
from utils.reply_waiter import ReplyWaiter
from utils.stage_queue import StageQueue


# Configure logging
def setup_logging(debug_mode: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        debug_mode: If True, set logging level to DEBUG, otherwise INFO
    """
    log_level = logging.DEBUG if debug_mode else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set specific log levels for noisy libraries
    logging.getLogger('aiogram').setLevel(logging.INFO)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.INFO)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured with level: {logging.getLevelName(log_level)}")


async def main() -> None:
    """
    Main function to initialize and run the bot.

    This function:
    1. Loads configuration from environment variables
    2. Initializes the database and seeds the command table
    3. Creates the pipeline components and services
    4. Starts the caches and the queue consumer
    5. Starts bot polling
    6. Handles graceful shutdown
    """
    logger = logging.getLogger(__name__)

    try:
        # Load configuration from environment
        logger.info("Loading configuration from environment variables...")
        config = Config.from_env()

        # Setup logging based on debug mode
        setup_logging(config.debug_mode)

        logger.info("Configuration loaded successfully")
        logger.info(f"Debug mode: {config.debug_mode}")
        logger.info(f"Admin IDs: {config.admin_ids}")
        logger.info(f"Database path: {config.db_path}")

        # Initialize database connection
        logger.info("Initializing database connection...")
        db_connection = DatabaseConnection(config.db_path)
        await db_connection.init_db()
        command_repository = CommandRepository(db_connection)
        config_repository = ConfigRepository(db_connection)

        # Initialize bot
        logger.info("Initializing bot and dispatcher...")
        bot = Bot(token=config.bot_token)
        me = await bot.get_me()
        transport = TelegramTransport(bot, bot_id=me.id, bot_username=me.username)

        session = aiohttp.ClientSession()
        stats = PipelineStats()

        # Caches
        media_cache = DedupCache(
            "media",
            ttl_seconds=config.media_cache_ttl_seconds,
            max_size=config.media_cache_max_size,
            flush_interval_seconds=config.cache_flush_interval_seconds,
            sweep_interval_seconds=config.cache_sweep_interval_seconds
        )
        image_cache = DedupCache(
            "images",
            ttl_seconds=config.image_cache_ttl_seconds,
            max_size=config.image_cache_max_size,
            flush_interval_seconds=config.cache_flush_interval_seconds,
            sweep_interval_seconds=config.cache_sweep_interval_seconds
        )

        # Media pipeline
        logger.info("Creating media pipeline...")
        media_download_service = DownloadService(
            session,
            max_file_size=config.max_file_size,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            timeout_seconds=config.download_timeout_seconds
        )
        image_download_service = DownloadService(
            session,
            max_file_size=config.max_image_size,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            timeout_seconds=config.download_timeout_seconds,
            expected_prefix="image/"
        )
        delivery_pipeline = DeliveryPipeline(
            transport=transport,
            extraction_service=ExtractionService(
                build_default_resolvers(session, max_file_size=config.max_file_size),
                timeout_seconds=config.extraction_timeout_seconds
            ),
            download_service=media_download_service,
            media_cache=media_cache,
            extraction_stage=StageQueue("extract", config.extraction_concurrency, config.extraction_interval_seconds),
            download_stage=StageQueue("download", config.download_concurrency, config.download_interval_seconds),
            send_stage=StageQueue("send", config.send_concurrency, config.send_interval_seconds),
            max_media_items=config.max_media_items,
            stats=stats
        )

        # Services
        logger.info("Creating service instances...")
        openai_client = OpenAIClient(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            model=config.openai_model,
            max_tokens=config.max_tokens
        )
        ai_service = AIService(
            openai_client,
            config_repository,
            history_limit=config.ai_history_limit,
            stats=stats
        )
        tts_client = TTSClient(
            session,
            api_url=config.tts_api_url,
            voice=config.tts_voice,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds
        )
        image_search_service = None
        if config.image_search_url:
            image_search_service = ImageSearchService(
                client=ImageSearchClient(session, config.image_search_url),
                image_cache=image_cache,
                validator=MediaValidator(
                    session,
                    expected_prefix="image/",
                    max_retries=config.max_retries,
                    retry_delay_seconds=config.retry_delay_seconds
                ),
                download_service=image_download_service
            )
        reply_waiter = ReplyWaiter()
        message_queue = MessageQueue(reply_waiter)

        registry = CommandRegistry()
        command_service = CommandService(
            registry,
            transport,
            command_repository,
            config_repository,
            admin_ids=config.admin_ids,
            stats=stats
        )
        general_commands = GeneralCommands(
            transport,
            command_service,
            ai_service,
            image_download_service,
            stats,
            caches=[media_cache, image_cache],
            queue_size=lambda: len(message_queue)
        )
        media_commands = MediaCommands(
            transport,
            tts_client,
            image_search_service,
            MusicClient(session, config.music_api_url or ""),
            media_download_service,
            reply_waiter,
            stats,
            ai_service=ai_service,
            openai_client=openai_client,
            selection_timeout_seconds=config.song_selection_timeout_seconds
        )
        register_commands(registry, general_commands, media_commands)
        await command_repository.seed(registry.names())

        processor = MessageProcessor(
            queue=message_queue,
            transport=transport,
            rate_limiter=RateLimiter(
                config.rate_limit_window_seconds,
                config.rate_limit_max_requests,
                stats=stats
            ),
            command_service=command_service,
            delivery_pipeline=delivery_pipeline,
            webhook_service=WebhookService(session, config.webhook_urls),
            ai_service=ai_service,
            voice_echo_service=VoiceEchoService(
                transport,
                tts_client,
                DebounceManager(
                    interval_seconds=config.message_settle_interval_seconds,
                    max_attempts=config.message_settle_max_attempts,
                    timeout_seconds=config.message_settle_timeout_seconds
                ),
                senders=config.voice_reply_senders,
                stats=stats
            ),
            stats=stats,
            poll_interval_seconds=config.queue_poll_interval_seconds
        )

        dp = Dispatcher()

        # Register routers
        logger.info("Registering routers...")
        dp.include_router(message_router)

        # Inject dependencies into handlers
        dp['transport'] = transport
        dp['message_queue'] = message_queue

        media_cache.start()
        image_cache.start()
        processor.start()

        logger.info("Bot initialization complete")
        logger.info("=" * 50)
        logger.info(f"Starting bot polling as @{me.username}...")
        logger.info("=" * 50)

        # Start polling
        try:
            await dp.start_polling(
                bot,
                allowed_updates=dp.resolve_used_update_types()
            )
        finally:
            # Graceful shutdown
            logger.info("Shutting down bot...")
            await processor.stop()
            await media_commands.close()
            await media_cache.stop()
            await image_cache.stop()
            await session.close()
            await bot.session.close()
            await db_connection.close()
            logger.info("Bot shutdown complete")

    except ValueError as e:
        # Configuration error
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    except Exception as e:
        # Unexpected error
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    """Entry point when running the module directly."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
