"""用于解耦通道与编排器通信的异步消息队列。"""

import asyncio

from chanbot.bus.events import InboundMessage, OutboundMessage


class MessageBus:
    """
    将聊天通道与编排核心解耦的异步消息总线。

    通道将消息推送到入站队列，编排器处理它们
    并将回复推送到出站队列。
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """从通道向编排器发布消息。"""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """消费下一条入站消息（阻塞直到可用）。"""
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        """从编排器向通道发布消息。"""
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        """消费下一条出站消息（阻塞直到可用）。"""
        return await self.outbound.get()

    async def deliver(self, channel_id: str, content: str, transport: str = "discord") -> None:
        """向通道投递一条消息。"""
        await self.publish_outbound(OutboundMessage(
            channel_id=channel_id,
            content=content,
            transport=transport,
        ))

    @property
    def inbound_size(self) -> int:
        """待处理的入站消息数量。"""
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        """待处理的出站消息数量。"""
        return self.outbound.qsize()
