"""消息总线的事件类型。"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """从聊天通道接收的消息。"""

    channel_id: str  # 通道标识符
    sender_id: str  # 用户标识符
    content: str  # 消息文本
    transport: str = "discord"  # 产生该消息的传输层
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)  # 通道特定的数据


@dataclass
class OutboundMessage:
    """要发送到聊天通道的消息。"""

    channel_id: str
    content: str
    transport: str = "discord"
    reply_to: str | None = None  # 回复特定消息
    metadata: dict[str, Any] = field(default_factory=dict)
