"""工具的基类。"""

from abc import ABC, abstractmethod
from contextvars import ContextVar
from typing import Any

# 当前工具调用所属的通道，按 asyncio 任务隔离
current_channel: ContextVar[str] = ContextVar("chanbot_current_channel", default="")


class Tool(ABC):
    """
    可供对话引擎调用的工具的抽象基类。

    参数用 JSON Schema 描述；注册表在执行前按 schema 校验参数。
    """

    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        """工具名称，用于函数调用。"""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """工具功能的描述。"""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """工具参数的 JSON Schema。"""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """
        使用给定参数执行工具。

        返回:
            工具执行的字符串结果。
        """
        pass

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """根据 JSON Schema 验证参数，有效时返回空列表。"""
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema 必须是 object 类型，得到的是 {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        t, label = schema.get("type"), path or "parameter"
        expected = self._TYPE_MAP.get(t)
        # bool 是 int 的子类，不能当作数字
        if expected and (not isinstance(val, expected) or (t in ("integer", "number") and isinstance(val, bool))):
            return [f"{label} 应该是 {t}"]

        errors = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} 必须是以下值之一 {schema['enum']}")
        if t == "string":
            if "minLength" in schema and len(val) < schema["minLength"]:
                errors.append(f"{label} 至少需要 {schema['minLength']} 个字符")
            if "maxLength" in schema and len(val) > schema["maxLength"]:
                errors.append(f"{label} 最多 {schema['maxLength']} 个字符")
        if t == "object":
            props = schema.get("properties", {})
            for key in schema.get("required", []):
                if key not in val:
                    errors.append(f"缺少必填参数 {path + '.' + key if path else key}")
            for key, item in val.items():
                if key in props:
                    errors.extend(self._validate(item, props[key], path + "." + key if path else key))
        return errors

    def to_schema(self) -> dict[str, Any]:
        """将工具转换为 OpenAI 函数模式格式。"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ChannelTool(Tool):
    """
    作用于某个通道的工具。

    通道来自正在执行的调用：ToolRegistry.for_channel 返回的视图在执行期间
    通过 current_channel 绑定通道，并发处理的多个通道互不影响。
    set_context 设置的通道只在没有绑定时使用。
    """

    def __init__(self):
        self._channel_id = ""

    def set_context(self, channel_id: str) -> None:
        """设置默认通道。"""
        self._channel_id = channel_id

    @property
    def channel_id(self) -> str:
        return current_channel.get() or self._channel_id
