"""对话引擎的基类接口。"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chanbot.agent.tools.registry import ToolRegistry

# 无法从响应中获得费用时使用的每 token 估算价格
INPUT_TOKEN_COST = 0.000003
OUTPUT_TOKEN_COST = 0.000015


@dataclass
class ToolCallRequest:
    """来自 LLM 的工具调用请求。"""
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class EngineReply:
    """对话引擎的一次回复。"""
    content: str
    usage: dict[str, Any] = field(default_factory=dict)
    cost: float | None = None
    finish_reason: str = "stop"
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error"

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


def estimate_cost(usage: dict[str, Any] | None) -> float:
    """根据用量估算费用。优先使用 total_cost，否则按 token 数计算。"""
    if not usage:
        return 0.0
    if usage.get("total_cost"):
        return float(usage["total_cost"])
    input_tokens = usage.get("input_tokens") or usage.get("prompt_tokens") or 0
    output_tokens = usage.get("output_tokens") or usage.get("completion_tokens") or 0
    return input_tokens * INPUT_TOKEN_COST + output_tokens * OUTPUT_TOKEN_COST


class ConversationEngine(ABC):
    """
    对话引擎的抽象基类。

    会话句柄是不透明的，由引擎创建并保存对话状态；
    调用方只负责把句柄与通道绑定。
    """

    @abstractmethod
    async def create_session(self) -> str:
        """创建新的对话，返回其句柄。"""
        pass

    @abstractmethod
    async def invoke(
        self,
        handle: str,
        instruction: str,
        system_prompt: str | None = None,
        tools: "ToolRegistry | None" = None,
    ) -> EngineReply:
        """
        在给定对话中发送一条指令。

        参数:
            handle: create_session 返回的对话句柄。
            instruction: 要执行的指令或用户消息。
            system_prompt: 可选的系统提示。
            tools: 可供引擎调用的工具。

        返回:
            引擎的最终回复，费用包含本次调用中的所有往返。
        """
        pass
