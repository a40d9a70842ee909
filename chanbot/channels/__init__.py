"""聊天通道模块。"""

from chanbot.channels.base import BaseChannel, ChannelDirectory, ChannelMapping
from chanbot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelDirectory", "ChannelMapping", "ChannelManager"]
