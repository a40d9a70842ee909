"""调度器类型。"""

from dataclasses import dataclass, field
from typing import Literal


@dataclass
class Trigger:
    """任务的触发条件。"""
    kind: Literal["cron", "at"]
    # For "cron": expression, 5 fields or 6 with leading seconds
    # 对于 "cron"：表达式，5 个字段或以秒开头的 6 个字段
    expr: str | None = None
    # For "at": timestamp in ms
    # 对于 "at"：毫秒时间戳
    at_ms: int | None = None
    # IANA timezone
    tz: str = "UTC"

    @classmethod
    def cron(cls, expr: str, tz: str = "UTC") -> "Trigger":
        return cls(kind="cron", expr=expr, tz=tz)

    @classmethod
    def at(cls, at_ms: int, tz: str = "UTC") -> "Trigger":
        return cls(kind="at", at_ms=at_ms, tz=tz)

    def describe(self) -> str:
        if self.kind == "cron":
            return f"{self.expr} ({self.tz})"
        return f"at {self.at_ms} ({self.tz})"


@dataclass
class ScheduledTask:
    """一个已调度的任务。"""
    id: str
    name: str
    trigger: Trigger
    instruction: str
    channel_id: str
    one_time: bool = False
    enabled: bool = True
    created_at_ms: int = 0
    updated_at_ms: int = 0
    last_run_at_ms: int | None = None
    last_status: Literal["ok", "error", "skipped"] | None = None
    last_error: str | None = None
    # 一次性任务的原始自然语言输入，仅用于显示
    natural_time: str | None = None


@dataclass
class ChannelSchedule:
    """单个通道的持久化调度文档。"""
    channel_id: str
    version: int = 1
    tasks: list[ScheduledTask] = field(default_factory=list)
