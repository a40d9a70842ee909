"""基于 LiteLLM 的对话引擎实现。"""

import json
import uuid
from typing import TYPE_CHECKING, Any

import litellm
from litellm import acompletion
from loguru import logger

from chanbot.providers.base import ConversationEngine, EngineReply, ToolCallRequest, estimate_cost

if TYPE_CHECKING:
    from chanbot.agent.tools.registry import ToolRegistry


class LiteLLMEngine(ConversationEngine):
    """
    使用 LiteLLM 的对话引擎。

    每个句柄在内存中保存一份消息历史，通过统一接口
    支持 Anthropic、OpenAI、OpenRouter 等提供商。
    传入工具时，引擎在一次 invoke 内完成工具调用循环。
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5",
        max_tokens: int = 4096,
        temperature: float = 0.7,
        max_history: int = 50,
        max_tool_iterations: int = 20,
    ):
        self.api_key = api_key
        self.api_base = api_base
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_history = max_history
        self.max_tool_iterations = max_tool_iterations
        self._histories: dict[str, list[dict[str, Any]]] = {}

        if api_base:
            litellm.api_base = api_base

        # 禁用 LiteLLM 日志噪音
        litellm.suppress_debug_info = True

    async def create_session(self) -> str:
        handle = f"conv_{uuid.uuid4().hex}"
        self._histories[handle] = []
        return handle

    def history(self, handle: str) -> list[dict[str, Any]]:
        """获取句柄的消息历史（未知句柄视为空对话）。"""
        return self._histories.setdefault(handle, [])

    async def invoke(
        self,
        handle: str,
        instruction: str,
        system_prompt: str | None = None,
        tools: "ToolRegistry | None" = None,
    ) -> EngineReply:
        history = self.history(handle)

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(history[-self.max_history:])
        messages.append({"role": "user", "content": instruction})

        usage: dict[str, int] = {}
        cost = 0.0
        reply: EngineReply | None = None

        for _ in range(self.max_tool_iterations):
            reply = await self._complete(messages, tools)
            if reply.is_error:
                return reply

            for key, value in reply.usage.items():
                usage[key] = usage.get(key, 0) + value
            cost += reply.cost or 0.0

            if not (reply.has_tool_calls and tools):
                break

            messages.append({
                "role": "assistant",
                "content": reply.content or "",
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),  # 必须是 JSON 字符串
                        },
                    }
                    for tc in reply.tool_calls
                ],
            })
            for tc in reply.tool_calls:
                args_str = json.dumps(tc.arguments, ensure_ascii=False)
                logger.info(f"工具调用：{tc.name}({args_str[:200]})")
                result = await tools.execute(tc.name, tc.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": tc.id,
                    "name": tc.name,
                    "content": result,
                })

        content = reply.content if reply and reply.content else "已完成处理，但没有可回复的内容。"
        history.append({"role": "user", "content": instruction})
        history.append({"role": "assistant", "content": content})
        return EngineReply(content=content, usage=usage, cost=cost)

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: "ToolRegistry | None",
    ) -> EngineReply:
        kwargs: dict[str, Any] = {
            "model": self.default_model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if tools and len(tools):
            kwargs["tools"] = tools.get_definitions()
            kwargs["tool_choice"] = "auto"

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            # 将错误作为内容返回以进行优雅处理
            logger.error(f"调用 LLM 时出错：{e}")
            return EngineReply(content=f"Error calling LLM: {e}", finish_reason="error")

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> EngineReply:
        """将 LiteLLM 响应解析为 EngineReply。"""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            args = tc.function.arguments
            if isinstance(args, str):
                try:
                    args = json.loads(args)
                except json.JSONDecodeError:
                    args = {"raw": args}
            tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=args))

        usage: dict[str, Any] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        cost = (getattr(response, "_hidden_params", None) or {}).get("response_cost")
        return EngineReply(
            content=message.content or "",
            usage=usage,
            cost=cost if cost is not None else estimate_cost(usage),
            finish_reason=choice.finish_reason or "stop",
            tool_calls=tool_calls,
        )
