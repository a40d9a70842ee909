"""只负责投递的 Discord 通道实现。"""

import asyncio
from typing import Any

import httpx
from loguru import logger

from chanbot.bus.events import OutboundMessage
from chanbot.channels.base import BaseChannel
from chanbot.config.schema import DiscordConfig

DISCORD_API_BASE = "https://discord.com/api/v10"
# Discord 单条消息的长度上限
MAX_MESSAGE_LENGTH = 2000


def split_message(content: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """按长度上限拆分消息，尽量在换行处断开。"""
    chunks = []
    while len(content) > limit:
        cut = content.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(content[:cut])
        content = content[cut:].lstrip("\n")
    if content:
        chunks.append(content)
    return chunks


class DiscordChannel(BaseChannel):
    """通过 Discord REST API 发送消息的通道。"""

    name = "discord"

    def __init__(self, config: DiscordConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.config: DiscordConfig = config
        self._http = client

    async def start(self) -> None:
        if not self.config.token:
            logger.error("未配置 Discord bot 令牌")
            return
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
        self._running = True

    async def stop(self) -> None:
        self._running = False
        if self._http:
            await self._http.aclose()
            self._http = None

    async def send(self, msg: OutboundMessage) -> None:
        """通过 Discord REST API 发送消息，超长消息拆分为多条。"""
        if not self._http:
            logger.warning("Discord HTTP 客户端未初始化")
            return

        url = f"{DISCORD_API_BASE}/channels/{msg.channel_id}/messages"
        headers = {"Authorization": f"Bot {self.config.token}"}

        for i, chunk in enumerate(split_message(msg.content)):
            payload: dict[str, Any] = {"content": chunk}
            if msg.reply_to and i == 0:
                payload["message_reference"] = {"message_id": msg.reply_to}
                payload["allowed_mentions"] = {"replied_user": False}
            await self._post(url, headers, payload)

    async def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> None:
        for attempt in range(3):
            try:
                response = await self._http.post(url, headers=headers, json=payload)
                if response.status_code == 429:
                    retry_after = float(response.json().get("retry_after", 1.0))
                    logger.warning(f"Discord 速率受限，{retry_after}秒后重试")
                    await asyncio.sleep(retry_after)
                    continue
                response.raise_for_status()
                return
            except httpx.HTTPError as e:
                if attempt == 2:
                    logger.error(f"发送 Discord 消息时出错：{e}")
                else:
                    await asyncio.sleep(1)
