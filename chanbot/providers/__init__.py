"""对话引擎抽象模块。"""

from chanbot.providers.base import ConversationEngine, EngineReply, ToolCallRequest, estimate_cost
from chanbot.providers.litellm_provider import LiteLLMEngine

__all__ = ["ConversationEngine", "EngineReply", "ToolCallRequest", "LiteLLMEngine", "estimate_cost"]
