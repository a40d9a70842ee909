"""协调聊天通道的通道管理器。"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from loguru import logger

from chanbot.bus.queue import MessageBus
from chanbot.channels.base import BaseChannel, ChannelDirectory, ChannelMapping

if TYPE_CHECKING:
    from chanbot.config.schema import Config
    from chanbot.scheduler.service import SchedulerService
    from chanbot.session.manager import SessionManager


class ChannelManager:
    """
    管理聊天传输层并路由出站消息。

    职责：
    - 根据配置初始化启用的传输层
    - 把出站消息分发到对应的传输层
    - 通道映射增删时通知调度器和会话管理器
    """

    def __init__(
        self,
        config: Config,
        bus: MessageBus,
        directory: ChannelDirectory,
        scheduler: "SchedulerService | None" = None,
        sessions: "SessionManager | None" = None,
    ):
        self.config = config
        self.bus = bus
        self.directory = directory
        self.scheduler = scheduler
        self.sessions = sessions
        self.channels: dict[str, BaseChannel] = {}
        self._dispatch_task: asyncio.Task | None = None

        self._init_channels()

    def _init_channels(self) -> None:
        """根据配置初始化传输层。"""
        if self.config.channels.discord.enabled:
            from chanbot.channels.discord import DiscordChannel
            self.channels["discord"] = DiscordChannel(self.config.channels.discord)
            logger.info("Discord 通道已启用")

    def register(self, channel: BaseChannel) -> None:
        """注册一个额外的传输层。"""
        self.channels[channel.name] = channel

    async def start_all(self) -> None:
        """启动所有传输层和出站分发器。"""
        if not self.channels:
            logger.warning("未启用任何通道")

        self._dispatch_task = asyncio.create_task(self._dispatch_outbound())

        for name, channel in self.channels.items():
            logger.info(f"正在启动 {name} 通道...")
            try:
                await channel.start()
            except Exception as e:
                logger.error(f"启动通道 {name} 失败：{e}")

    async def stop_all(self) -> None:
        """停止所有传输层和分发器。"""
        logger.info("正在停止所有通道...")

        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"已停止 {name} 通道")
            except Exception as e:
                logger.error(f"停止 {name} 时出错：{e}")

    async def _dispatch_outbound(self) -> None:
        """将出站消息分发到对应的传输层。"""
        logger.info("出站分发器已启动")

        while True:
            try:
                msg = await asyncio.wait_for(self.bus.consume_outbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            channel = self.channels.get(msg.transport)
            if not channel:
                logger.warning(f"未知传输层：{msg.transport}（通道 {msg.channel_id}）")
                continue
            try:
                await channel.send(msg)
            except Exception as e:
                logger.error(f"发送到 {msg.transport}:{msg.channel_id} 时出错：{e}")

    def add_mapping(self, mapping: ChannelMapping) -> None:
        """添加通道映射并恢复该通道的调度任务。"""
        self.directory.add(mapping)
        if self.scheduler:
            self.scheduler.add_channel(mapping.channel_id)

    def remove_mapping(self, channel_id: str) -> None:
        """
        通道被删除时清理其运行时状态。

        调度任务被撤防但调度文档保留；活跃会话被归档。
        """
        if self.scheduler:
            self.scheduler.remove_channel(channel_id)
        if self.sessions:
            self.sessions.archive_channel(channel_id)
        self.directory.remove(channel_id)
        logger.info(f"已移除通道 {channel_id}")

    def get_channel(self, name: str) -> BaseChannel | None:
        return self.channels.get(name)

    def get_status(self) -> dict[str, Any]:
        """获取所有传输层的状态。"""
        return {
            name: {"enabled": True, "running": channel.is_running}
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
