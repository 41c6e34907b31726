"""
Message formatter for bot replies.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence


logger = logging.getLogger(__name__)


class MessageFormatter:
    """Formats plain-text bot replies."""

    @staticmethod
    def format_uptime(seconds: int) -> str:
        """
        Format a duration as ``1d 2h 3m 4s``, dropping leading zero units.
        """
        days, remainder = divmod(max(0, int(seconds)), 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days:
            parts.append(f"{days}d")
        if days or hours:
            parts.append(f"{hours}h")
        if days or hours or minutes:
            parts.append(f"{minutes}m")
        parts.append(f"{secs}s")
        return " ".join(parts)

    @staticmethod
    def format_stats(
        stats: Dict[str, Any],
        ai_enabled: bool,
        commands_enabled: bool,
        cache_stats: Optional[Iterable[Dict[str, Any]]] = None,
        queue_size: int = 0
    ) -> str:
        """
        Format running statistics for the !logs command.

        Args:
            stats: Output of PipelineStats.to_dict()
            ai_enabled: Current AI switch
            commands_enabled: Current commands switch
            cache_stats: Output of DedupCache.stats() per cache
            queue_size: Messages waiting in the queue

        Returns:
            Formatted statistics message
        """
        lines = [
            "🤖 *Bot Statistics* 🤖",
            f"Uptime: {MessageFormatter.format_uptime(stats.get('uptime_seconds', 0))}",
            f"AI Enabled: {ai_enabled}",
            f"Commands Enabled: {commands_enabled}",
            f"Messages Processed: {stats.get('processed', 0)}",
            f"Queued: {queue_size}",
            f"Commands Processed: {stats.get('commands_processed', 0)}",
            f"AI Responses: {stats.get('ai_responses', 0)}",
            f"Media Delivered: {stats.get('media_delivered', 0)}",
            f"Images Sent: {stats.get('images_sent', 0)}",
            f"Audio Sent: {stats.get('audio_sent', 0)}",
            f"Rate Limit Hits: {stats.get('rate_limit_hits', 0)}",
            f"Dropped: {stats.get('dropped', 0)}",
            f"Errors: {stats.get('errors', 0)}",
        ]
        for cache in cache_stats or ():
            lines.append(
                f"Cache {cache['name']}: {cache['entries']} entries, {cache['tracked_items']} tracked items"
            )
        return "\n".join(lines)

    @staticmethod
    def format_help(commands: Sequence[Any]) -> str:
        """
        Format the command list.

        Args:
            commands: CommandSpec-like objects with name, description and usage

        Returns:
            Formatted help message
        """
        if not commands:
            return "No commands available."
        entries = [
            f"*!{command.name}*: {command.description}\nFormat: {command.usage}"
            for command in commands
        ]
        return "Here are the available commands:\n\n" + "\n\n".join(entries)

    @staticmethod
    def format_song_results(tracks: Sequence[Any]) -> str:
        """
        Format song search results as a numbered list.

        Args:
            tracks: Track-like objects with title, artist and album
        """
        lines: List[str] = ["*🎵 Found these songs:*", ""]
        for index, track in enumerate(tracks, start=1):
            lines.append(f"*{index}.* {track.title}")
            lines.append(f"👤 {track.artist}")
            if track.album:
                lines.append(f"💿 {track.album}")
            lines.append("")
        lines.append(f"_Reply with the number of the song you want to download (1-{len(tracks)})_")
        return "\n".join(lines)
