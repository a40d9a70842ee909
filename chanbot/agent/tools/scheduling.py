"""供对话引擎调用的调度工具。"""

import json
from datetime import datetime, timezone as dt_timezone
from typing import Any
from zoneinfo import ZoneInfo

from chanbot.agent.tools.base import ChannelTool
from chanbot.scheduler import timeparse
from chanbot.scheduler.errors import SchedulerError, TimeResolutionError
from chanbot.scheduler.service import SchedulerService
from chanbot.scheduler.types import ScheduledTask, Trigger

CRON_EXAMPLES = [
    "0 9 * * * - Every day at 9:00 AM",
    "0 9 * * 1 - Every Monday at 9:00 AM",
    "*/30 * * * * - Every 30 minutes",
    "0 0 1 * * - First day of every month at midnight",
    "0 17 * * 5 - Every Friday at 5:00 PM",
]

TIMEZONE_TIP = "Use the IANA timezone database format (Continent/City)"


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _timezone_error(tz: str) -> str:
    return _dumps({
        "error": f'Invalid timezone: "{tz}". Must be a valid IANA timezone.',
        "examples": timeparse.EXAMPLE_TIMEZONES,
        "tip": TIMEZONE_TIP,
    })


def _no_context_error() -> str:
    return _dumps({"error": "No channel context: scheduling tools can only be used inside a channel."})


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=dt_timezone.utc).isoformat()


def _local(ms: int, tz: str) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=ZoneInfo(tz)).strftime("%Y-%m-%d %H:%M:%S %Z")


class _SchedulingTool(ChannelTool):
    def __init__(self, scheduler: SchedulerService):
        super().__init__()
        self._scheduler = scheduler

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._scheduler.clock() / 1000, tz=dt_timezone.utc)


class ScheduleOneTimeTool(_SchedulingTool):
    """用自然语言时间调度一次性任务。"""

    @property
    def name(self) -> str:
        return "schedule_one_time"

    @property
    def description(self) -> str:
        return (
            'Schedule a one-time task using natural language (e.g., "tomorrow at 9pm"). '
            "The task will execute once at the specified time and then be automatically removed. "
            "For recurring tasks, use schedule_recurring instead."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "natural_time": {
                    "type": "string",
                    "description": 'When the task should run, e.g. "tomorrow at 9pm", "in 10 minutes"',
                    "minLength": 1,
                },
                "timezone": {
                    "type": "string",
                    "description": 'IANA timezone of the user, e.g. "America/New_York", "UTC"',
                },
                "task": {
                    "type": "string",
                    "description": "What to do at the scheduled time",
                    "minLength": 1,
                },
            },
            "required": ["natural_time", "timezone", "task"],
        }

    async def execute(self, natural_time: str, timezone: str, task: str, **kwargs: Any) -> str:
        if not self.channel_id:
            return _no_context_error()
        if not timeparse.validate_timezone(timezone):
            return _timezone_error(timezone)

        try:
            target = timeparse.resolve(natural_time, timezone, reference_time=self._now())
        except TimeResolutionError as e:
            payload: dict[str, Any] = {"error": str(e), "input": natural_time, "timezone": timezone}
            if getattr(e, "examples", None):
                payload["examples"] = e.examples
            return _dumps(payload)

        at_ms = int(target.timestamp() * 1000)
        try:
            task_id = self._scheduler.schedule(
                Trigger.at(at_ms, timezone),
                task,
                channel_id=self.channel_id,
                natural_time=natural_time,
            )
        except (SchedulerError, OSError) as e:
            return _dumps({"error": f"Failed to schedule one-time task: {e}"})

        return _dumps({
            "success": True,
            "message": "One-time task scheduled successfully!",
            "task": {
                "id": task_id,
                "naturalTime": natural_time,
                "targetTime": _iso(at_ms),
                "timezone": timezone,
                "task": task,
            },
            "executionInfo": {
                "targetTime": _iso(at_ms),
                "localTime": _local(at_ms, timezone),
                "timeUntil": timeparse.format_time_until(target, self._now()),
            },
            "note": (
                "The task will execute automatically at the scheduled time and post results "
                "to this channel. After execution, the task will be removed automatically."
            ),
        })


class ScheduleRecurringTool(_SchedulingTool):
    """用 cron 表达式调度周期性任务。"""

    @property
    def name(self) -> str:
        return "schedule_recurring"

    @property
    def description(self) -> str:
        return (
            "Schedule a recurring task using a cron expression evaluated in the given timezone. "
            "The task repeats until removed. For one-time tasks, use schedule_one_time instead."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Unique name for this recurring task in this channel",
                    "minLength": 1,
                },
                "cron_expression": {
                    "type": "string",
                    "description": 'Cron expression "minute hour day month weekday", e.g. "0 9 * * 1"',
                },
                "timezone": {
                    "type": "string",
                    "description": 'IANA timezone for the schedule, e.g. "Europe/London"',
                },
                "task": {
                    "type": "string",
                    "description": "What to do on each run",
                    "minLength": 1,
                },
            },
            "required": ["name", "cron_expression", "timezone", "task"],
        }

    async def execute(
        self, name: str, cron_expression: str, timezone: str, task: str, **kwargs: Any
    ) -> str:
        if not self.channel_id:
            return _no_context_error()
        if not self._scheduler.validate(cron_expression):
            return _dumps({
                "error": (
                    f'Invalid cron expression: "{cron_expression}". '
                    "Must be 5 fields: minute hour day month weekday."
                ),
                "validFormat": "minute hour day month weekday",
                "examples": CRON_EXAMPLES,
            })
        if not timeparse.validate_timezone(timezone):
            return _timezone_error(timezone)

        existing = next(
            (t for t in self._scheduler.list_tasks(self.channel_id) if not t.one_time and t.name == name),
            None,
        )
        if existing:
            return _dumps({
                "error": (
                    f'A recurring task named "{name}" already exists in this channel. '
                    "Use a different name or remove the existing task first."
                ),
                "existingTask": {
                    "name": existing.name,
                    "cronExpression": existing.trigger.expr,
                    "timezone": existing.trigger.tz,
                    "task": existing.instruction,
                },
            })

        try:
            task_id = self._scheduler.schedule(
                Trigger.cron(cron_expression, timezone),
                task,
                channel_id=self.channel_id,
                name=name,
                one_time=False,
            )
        except (SchedulerError, OSError) as e:
            return _dumps({"error": f"Failed to schedule recurring task: {e}"})

        payload: dict[str, Any] = {
            "success": True,
            "message": f'Recurring task "{name}" scheduled successfully!',
            "task": {
                "id": task_id,
                "name": name,
                "cronExpression": cron_expression,
                "timezone": timezone,
                "task": task,
            },
            "note": (
                "The task will execute automatically according to the cron schedule and post "
                "results to this channel until you remove it."
            ),
        }
        created = self._scheduler.get(task_id)
        next_run = self._scheduler.next_run_at(created) if created else None
        if next_run:
            payload["nextRun"] = {"time": _iso(next_run), "localTime": _local(next_run, timezone)}
        return _dumps(payload)


class ScheduleListTool(_SchedulingTool):
    """列出当前通道的任务。"""

    @property
    def name(self) -> str:
        return "schedule_list"

    @property
    def description(self) -> str:
        return "List the scheduled tasks of this channel, one-time and recurring."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["all", "onetime", "recurring"],
                    "description": "Filter by schedule type (default: all)",
                },
            },
        }

    def _format_one_time(self, task: ScheduledTask, now: datetime) -> dict[str, Any]:
        at_ms = task.trigger.at_ms or 0
        return {
            "id": task.id,
            "naturalTime": task.natural_time,
            "targetTime": _iso(at_ms),
            "localTime": _local(at_ms, task.trigger.tz),
            "timezone": task.trigger.tz,
            "timeUntil": timeparse.format_time_until(
                datetime.fromtimestamp(at_ms / 1000, tz=dt_timezone.utc), now
            ),
            "task": task.instruction,
            "enabled": task.enabled,
        }

    def _format_recurring(self, task: ScheduledTask) -> dict[str, Any]:
        return {
            "id": task.id,
            "name": task.name,
            "cronExpression": task.trigger.expr,
            "timezone": task.trigger.tz,
            "task": task.instruction,
            "enabled": task.enabled,
            "lastRun": _iso(task.last_run_at_ms) if task.last_run_at_ms else None,
            "lastStatus": task.last_status,
        }

    async def execute(self, type: str = "all", **kwargs: Any) -> str:
        if not self.channel_id:
            return _no_context_error()

        now = self._now()
        tasks = self._scheduler.list_tasks(self.channel_id)
        one_time = [self._format_one_time(t, now) for t in tasks if t.one_time]
        recurring = [self._format_recurring(t) for t in tasks if not t.one_time]

        payload: dict[str, Any] = {"channelId": self.channel_id}
        total = 0
        if type in ("all", "onetime"):
            payload["oneTimeSchedules"] = {"count": len(one_time), "tasks": one_time}
            total += len(one_time)
        if type in ("all", "recurring"):
            payload["recurringSchedules"] = {"count": len(recurring), "tasks": recurring}
            total += len(recurring)

        if total == 0:
            payload["message"] = "No scheduled tasks found for this channel."
        else:
            payload["message"] = f"Found {total} scheduled {'task' if total == 1 else 'tasks'} for this channel."
        return _dumps(payload)


class ScheduleRemoveTool(_SchedulingTool):
    """按 ID 或周期性任务名称删除当前通道的任务。"""

    @property
    def name(self) -> str:
        return "schedule_remove"

    @property
    def description(self) -> str:
        return (
            "Remove a scheduled task from this channel. "
            "Use the task ID, or the name of a recurring task."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "identifier": {
                    "type": "string",
                    "description": "Task ID, or the name of a recurring task",
                    "minLength": 1,
                },
            },
            "required": ["identifier"],
        }

    async def execute(self, identifier: str, **kwargs: Any) -> str:
        if not self.channel_id:
            return _no_context_error()

        tasks = self._scheduler.list_tasks(self.channel_id)
        target = next((t for t in tasks if t.id == identifier), None)
        if target is None:
            target = next((t for t in tasks if not t.one_time and t.name == identifier), None)

        if target is None:
            return _dumps({
                "error": f'Schedule not found: "{identifier}"',
                "tip": (
                    "Use schedule_list to see the scheduled tasks in this channel. "
                    "Use the task ID, or the name of a recurring task."
                ),
            })

        try:
            self._scheduler.remove(target.id)
        except OSError as e:
            return _dumps({"error": f"Failed to remove schedule: {e}"})

        removed: dict[str, Any] = {
            "type": "onetime" if target.one_time else "recurring",
            "id": target.id,
            "name": target.name,
            "task": target.instruction,
        }
        if target.one_time:
            removed["naturalTime"] = target.natural_time
        else:
            removed["cronExpression"] = target.trigger.expr
        return _dumps({
            "success": True,
            "message": f"{'One-time' if target.one_time else 'Recurring'} schedule removed successfully!",
            "removed": removed,
        })


def scheduling_tools(scheduler: SchedulerService) -> list[ChannelTool]:
    """创建全部调度工具。"""
    return [
        ScheduleOneTimeTool(scheduler),
        ScheduleRecurringTool(scheduler),
        ScheduleListTool(scheduler),
        ScheduleRemoveTool(scheduler),
    ]
