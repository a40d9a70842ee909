"""用于解耦通道与编排器通信的消息总线模块。"""

from chanbot.bus.events import InboundMessage, OutboundMessage
from chanbot.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
