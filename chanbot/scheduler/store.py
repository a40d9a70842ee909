"""按通道存放的调度文档持久化。"""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from chanbot.channels.base import ChannelDirectory
from chanbot.scheduler.types import ChannelSchedule, ScheduledTask, Trigger

SCHEDULE_FILENAME = "schedules.json"
STORE_VERSION = 1


def task_to_dict(task: ScheduledTask) -> dict[str, Any]:
    """将任务转换为持久化格式（camelCase）。"""
    return {
        "id": task.id,
        "name": task.name,
        "trigger": {
            "kind": task.trigger.kind,
            "expr": task.trigger.expr,
            "atMs": task.trigger.at_ms,
            "tz": task.trigger.tz,
        },
        "instruction": task.instruction,
        "channelId": task.channel_id,
        "oneTime": task.one_time,
        "enabled": task.enabled,
        "createdAtMs": task.created_at_ms,
        "updatedAtMs": task.updated_at_ms,
        "lastRunAtMs": task.last_run_at_ms,
        "lastStatus": task.last_status,
        "lastError": task.last_error,
        "naturalTime": task.natural_time,
    }


def task_from_dict(data: dict[str, Any]) -> ScheduledTask:
    """从持久化格式还原任务。"""
    trigger = data["trigger"]
    return ScheduledTask(
        id=data["id"],
        name=data["name"],
        trigger=Trigger(
            kind=trigger["kind"],
            expr=trigger.get("expr"),
            at_ms=trigger.get("atMs"),
            tz=trigger.get("tz") or "UTC",
        ),
        instruction=data.get("instruction", ""),
        channel_id=data["channelId"],
        one_time=data.get("oneTime", False),
        enabled=data.get("enabled", True),
        created_at_ms=data.get("createdAtMs", 0),
        updated_at_ms=data.get("updatedAtMs", 0),
        last_run_at_ms=data.get("lastRunAtMs"),
        last_status=data.get("lastStatus"),
        last_error=data.get("lastError"),
        natural_time=data.get("naturalTime"),
    )


class ScheduleStore:
    """
    调度文档存储。

    每个通道一个 JSON 文档，位于该通道的工作空间目录中：
    <folder>/schedules.json
    """

    def __init__(self, directory: ChannelDirectory):
        self.directory = directory

    def path_for(self, channel_id: str) -> Path:
        """获取通道调度文档的路径。"""
        return self.directory.folder_for(channel_id) / SCHEDULE_FILENAME

    def known_channels(self) -> list[str]:
        """获取已映射的通道以及磁盘上已有调度文档的通道。"""
        channel_ids = list(self.directory.channel_ids())
        root = self.directory.channels_root
        if root.exists():
            for path in sorted(root.glob(f"*/{SCHEDULE_FILENAME}")):
                channel_id = path.parent.name
                if channel_id not in channel_ids:
                    channel_ids.append(channel_id)
        return channel_ids

    def load_channel(self, channel_id: str) -> ChannelSchedule:
        """从磁盘加载单个通道的调度文档。"""
        path = self.path_for(channel_id)
        if not path.exists():
            return ChannelSchedule(channel_id=channel_id)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            tasks = [task_from_dict(t) for t in data.get("tasks", [])]
            return ChannelSchedule(
                channel_id=channel_id,
                version=data.get("version", STORE_VERSION),
                tasks=tasks,
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"无法加载通道 {channel_id} 的调度文档：{e}")
            return ChannelSchedule(channel_id=channel_id)

    def save_channel(self, channel_id: str, tasks: list[ScheduledTask]) -> None:
        """
        将通道的全部任务写入磁盘。

        先写临时文件再替换，写入失败时原文档保持不变。
        I/O 错误会向调用者传播。
        """
        path = self.path_for(channel_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": STORE_VERSION,
            "tasks": [task_to_dict(t) for t in tasks],
        }

        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def load_all(self) -> list[ScheduledTask]:
        """加载所有通道的任务，按创建顺序排列。"""
        tasks: list[ScheduledTask] = []
        for channel_id in self.known_channels():
            tasks.extend(self.load_channel(channel_id).tasks)
        # sorted() 是稳定的，同一毫秒内创建的任务保留文档顺序
        return sorted(tasks, key=lambda t: t.created_at_ms)
