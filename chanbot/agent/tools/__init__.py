"""对话引擎可调用的工具。"""

from chanbot.agent.tools.base import ChannelTool, Tool
from chanbot.agent.tools.registry import ToolRegistry
from chanbot.agent.tools.scheduling import (
    ScheduleListTool,
    ScheduleOneTimeTool,
    ScheduleRecurringTool,
    ScheduleRemoveTool,
    scheduling_tools,
)

__all__ = [
    "Tool",
    "ChannelTool",
    "ToolRegistry",
    "ScheduleOneTimeTool",
    "ScheduleRecurringTool",
    "ScheduleListTool",
    "ScheduleRemoveTool",
    "scheduling_tools",
]
