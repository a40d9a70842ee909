from typing import Any

from chanbot.agent.tools.base import Tool
from chanbot.agent.tools.registry import ToolRegistry


class SampleTool(Tool):
    @property
    def name(self) -> str:
        return "sample"

    @property
    def description(self) -> str:
        return "示例工具"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "minLength": 2},
                "count": {"type": "integer"},
                "mode": {"type": "string", "enum": ["fast", "full"]},
                "meta": {
                    "type": "object",
                    "properties": {"tag": {"type": "string", "maxLength": 4}},
                    "required": ["tag"],
                },
            },
            "required": ["query", "count"],
        }

    async def execute(self, **kwargs: Any) -> str:
        return "ok"


# 测试缺少必填参数的情况
def test_validate_params_missing_required() -> None:
    tool = SampleTool()
    errors = tool.validate_params({"query": "hi"})
    assert "缺少必填参数 count" in "; ".join(errors)


# 测试参数类型的情况
def test_validate_params_type() -> None:
    tool = SampleTool()
    assert any("count 应该是 integer" in e for e in tool.validate_params({"query": "hi", "count": "2"}))
    # 布尔值不能当作整数
    assert any("count 应该是 integer" in e for e in tool.validate_params({"query": "hi", "count": True}))


# 测试枚举值和长度限制的情况
def test_validate_params_enum_and_length() -> None:
    tool = SampleTool()
    errors = tool.validate_params({"query": "h", "count": 2, "mode": "slow"})
    assert any("query 至少需要 2 个字符" in e for e in errors)
    assert any("mode 必须是以下值之一" in e for e in errors)


# 测试嵌套对象的情况
def test_validate_params_nested_object() -> None:
    tool = SampleTool()
    assert any("缺少必填参数 meta.tag" in e for e in tool.validate_params({"query": "hi", "count": 2, "meta": {}}))
    errors = tool.validate_params({"query": "hi", "count": 2, "meta": {"tag": "toolong"}})
    assert any("meta.tag 最多 4 个字符" in e for e in errors)


# 测试忽略未知参数的情况
def test_validate_params_ignores_unknown_fields() -> None:
    tool = SampleTool()
    assert tool.validate_params({"query": "hi", "count": 2, "extra": "x"}) == []


# 测试注册表返回验证错误的情况
async def test_registry_returns_validation_error() -> None:
    reg = ToolRegistry()
    reg.register(SampleTool())
    result = await reg.execute("sample", {"query": "hi"})
    assert "参数无效" in result

    assert await reg.execute("sample", {"query": "hi", "count": 1}) == "ok"
    assert "未找到工具" in await reg.execute("missing", {})
    assert reg.tool_names == ["sample"]
    assert reg.get_definitions()[0]["function"]["name"] == "sample"
