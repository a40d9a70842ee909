"""工具注册表。"""

from typing import Any

from chanbot.agent.tools.base import ChannelTool, Tool, current_channel


class ToolRegistry:
    """
    已注册工具的集合。

    执行时先按 schema 校验参数；任何错误都以字符串形式返回给引擎。
    """

    def __init__(self, channel_id: str = ""):
        self._tools: dict[str, Tool] = {}
        self.channel_id = channel_id  # 绑定的通道，为空表示未绑定

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def set_context(self, channel_id: str) -> None:
        """为所有通道工具设置默认通道。"""
        for tool in self._tools.values():
            if isinstance(tool, ChannelTool):
                tool.set_context(channel_id)

    def for_channel(self, channel_id: str) -> "ToolRegistry":
        """返回绑定到指定通道的视图，与本注册表共享同一组工具。"""
        view = ToolRegistry(channel_id)
        view._tools = self._tools
        return view

    def get_definitions(self) -> list[dict[str, Any]]:
        """获取 OpenAI 格式的所有工具定义。"""
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(self, name: str, params: dict[str, Any]) -> str:
        """
        按名称执行工具。

        参数:
            name: 工具名称。
            params: 工具参数。

        返回:
            工具执行结果（字符串形式）。
        """
        tool = self._tools.get(name)
        if not tool:
            return f"错误：未找到工具 '{name}'"

        token = current_channel.set(self.channel_id) if self.channel_id else None
        try:
            errors = tool.validate_params(params)
            if errors:
                return f"错误：工具 '{name}' 的参数无效：" + "; ".join(errors)
            return await tool.execute(**params)
        except Exception as e:
            return f"执行 {name} 时出错：{e}"
        finally:
            if token is not None:
                current_channel.reset(token)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
