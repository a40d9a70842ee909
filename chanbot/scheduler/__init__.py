"""任务调度：触发器、持久化、时间解析和调度服务。"""

from chanbot.scheduler.errors import (
    InvalidTimezone,
    InvalidTrigger,
    SchedulerError,
    TimeInPast,
    TimeResolutionError,
    UnparseableTime,
)
from chanbot.scheduler.service import SchedulerService
from chanbot.scheduler.store import ScheduleStore
from chanbot.scheduler.types import ChannelSchedule, ScheduledTask, Trigger

__all__ = [
    "SchedulerService",
    "ScheduleStore",
    "ScheduledTask",
    "ChannelSchedule",
    "Trigger",
    "SchedulerError",
    "InvalidTrigger",
    "TimeResolutionError",
    "InvalidTimezone",
    "UnparseableTime",
    "TimeInPast",
]
