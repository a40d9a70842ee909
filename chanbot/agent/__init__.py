"""编排核心模块。"""

from chanbot.agent.context import ContextBuilder
from chanbot.agent.loop import AgentLoop

__all__ = ["AgentLoop", "ContextBuilder"]
