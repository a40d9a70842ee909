import asyncio

from chanbot.bus.events import OutboundMessage
from chanbot.bus.queue import MessageBus
from chanbot.channels.base import BaseChannel, ChannelMapping
from chanbot.channels.manager import ChannelManager
from chanbot.config.schema import Config
from chanbot.scheduler.service import SchedulerService
from chanbot.scheduler.types import Trigger
from chanbot.session.manager import SessionManager
from conftest import FakeEngine


class RecordingChannel(BaseChannel):
    name = "discord"

    def __init__(self):
        super().__init__(None)
        self.sent: list[OutboundMessage] = []

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, msg: OutboundMessage) -> None:
        self.sent.append(msg)


# 测试出站消息按传输层分发
async def test_dispatch_routes_by_transport(directory) -> None:
    bus = MessageBus()
    manager = ChannelManager(Config(), bus, directory)
    channel = RecordingChannel()
    manager.register(channel)

    await manager.start_all()
    try:
        await bus.deliver("c1", "hello")
        for _ in range(100):
            if channel.sent:
                break
            await asyncio.sleep(0.01)
    finally:
        await manager.stop_all()

    assert [m.content for m in channel.sent] == ["hello"]
    assert manager.get_status() == {"discord": {"enabled": True, "running": False}}


# 测试删除通道时撤防任务并归档会话，重新添加后恢复任务
async def test_remove_and_restore_mapping(tmp_path, directory, store, clock) -> None:
    sessions = SessionManager(tmp_path / "sessions.json", FakeEngine(), clock=clock)
    scheduler = SchedulerService(store, sessions=sessions, clock=clock)
    manager = ChannelManager(Config(), MessageBus(), directory, scheduler=scheduler, sessions=sessions)

    manager.add_mapping(ChannelMapping(channel_id="c1", name="ops", tenant_id="g9"))
    task_id = scheduler.schedule(Trigger.cron("0 9 * * *"), "x", channel_id="c1")
    session = await sessions.get_or_create_session("c1")
    assert directory.tenant_for("c1") == "g9"

    manager.remove_mapping("c1")

    assert scheduler.get(task_id) is None
    assert sessions.get(session.id).status == "archived"
    assert not directory.has("c1")

    manager.add_mapping(ChannelMapping(channel_id="c1", name="ops"))
    assert scheduler.get(task_id) is not None
