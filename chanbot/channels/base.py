"""聊天通道接口和通道目录。"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from chanbot.bus.events import OutboundMessage


@dataclass
class ChannelMapping:
    """通道与其工作空间目录、所属租户之间的映射。"""
    channel_id: str
    name: str = ""
    folder: str | None = None  # 为空时使用 <workspace>/channels/<channel_id>
    tenant_id: str | None = None  # 为空时使用默认租户


class ChannelDirectory:
    """
    已知通道的目录。

    用于把每个通道的持久化文件限定在该通道的工作空间目录中，
    并把通道解析到其计费租户。
    """

    def __init__(self, workspace: Path, default_tenant: str = ""):
        self.workspace = workspace
        self.default_tenant = default_tenant
        self._mappings: dict[str, ChannelMapping] = {}

    @property
    def channels_root(self) -> Path:
        return self.workspace / "channels"

    def add(self, mapping: ChannelMapping) -> None:
        """添加或替换通道映射。"""
        self._mappings[mapping.channel_id] = mapping
        logger.info(f"已添加通道映射 #{mapping.name or mapping.channel_id}")

    def remove(self, channel_id: str) -> ChannelMapping | None:
        """移除通道映射。"""
        return self._mappings.pop(channel_id, None)

    def get(self, channel_id: str) -> ChannelMapping | None:
        return self._mappings.get(channel_id)

    def has(self, channel_id: str) -> bool:
        return channel_id in self._mappings

    def channel_ids(self) -> list[str]:
        """获取所有已映射的通道 ID。"""
        return list(self._mappings.keys())

    def folder_for(self, channel_id: str) -> Path:
        """获取通道的工作空间目录。"""
        mapping = self._mappings.get(channel_id)
        if mapping and mapping.folder:
            return Path(mapping.folder).expanduser()
        return self.channels_root / channel_id

    def tenant_for(self, channel_id: str) -> str:
        """获取通道所属的租户 ID。"""
        mapping = self._mappings.get(channel_id)
        if mapping and mapping.tenant_id:
            return mapping.tenant_id
        return self.default_tenant


class BaseChannel(ABC):
    """
    聊天通道实现的抽象基类。

    chanbot 只需要通道的投递能力：调度任务和实时交互的回复
    经由消息总线路由到这里。
    """

    name: str = "base"

    def __init__(self, config: Any):
        self.config = config
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """启动通道（建立连接、创建客户端等）。"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """停止通道并清理资源。"""
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """
        通过此通道发送消息。

        参数:
            msg: 要发送的消息。
        """
        pass

    @property
    def is_running(self) -> bool:
        """检查通道是否正在运行。"""
        return self._running
