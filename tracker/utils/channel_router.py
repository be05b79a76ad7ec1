"""
Sandstorm Tracker - Channel Router Utility
Routes notification lines to a server's channel with a default fallback
"""

import logging
from typing import Optional

from tracker.config import ServerWatchTarget

logger = logging.getLogger(__name__)


class ChannelRouter:
    """Centralized channel routing with server-specific fallback logic"""

    def __init__(self, bot, default_channel_id: Optional[int] = None):
        self.bot = bot
        self.default_channel_id = default_channel_id

    def get_channel_id(self, target: ServerWatchTarget) -> Optional[int]:
        """
        Get channel ID with fallback

        Priority:
        1. Server-specific channel (notifyChannelId)
        2. Default channel (NOTIFY_CHANNEL_ID)
        """
        return target.notify_channel_id or self.default_channel_id

    def get_channel(self, target: ServerWatchTarget):
        """Get Discord channel object for a server"""
        channel_id = self.get_channel_id(target)
        if not channel_id or self.bot is None:
            return None

        channel = self.bot.get_channel(channel_id)
        if not channel:
            logger.warning(f"Channel {channel_id} not found for {target.server_id}")
            return None
        return channel

    async def send_line(self, target: ServerWatchTarget, text: str) -> bool:
        """Send a plain text line to the server's channel"""
        try:
            channel = self.get_channel(target)
            if not channel:
                return False
            await channel.send(text[:2000])
            return True
        except Exception as e:
            logger.error(f"Failed to send notification for {target.server_id}: {e}")
            return False
