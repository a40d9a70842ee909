import io

from rich.console import Console

from chanbot.bus.queue import MessageBus
from chanbot.channels.base import ChannelMapping
from chanbot.channels.manager import ChannelManager
from chanbot.cli import commands
from chanbot.config.schema import Config
from chanbot.session.manager import SessionManager
from conftest import FakeEngine


# 测试网关启动信息包含活跃会话数
async def test_gateway_summary_reports_active_sessions(monkeypatch, tmp_path, directory) -> None:
    output = io.StringIO()
    monkeypatch.setattr(commands, "console", Console(file=output, width=200))

    sessions = SessionManager(tmp_path / "sessions.json", FakeEngine())
    await sessions.get_or_create_session("c1")
    await sessions.get_or_create_session("c2")
    directory.add(ChannelMapping(channel_id="c1", name="ops"))
    config = Config()
    channels = ChannelManager(config, MessageBus(), directory)

    commands._print_gateway_summary(config, directory, sessions, None, channels)

    text = output.getvalue()
    assert "活跃会话：2 个" in text
    assert "通道映射：1 个" in text
    assert "未启用任何通道" in text
