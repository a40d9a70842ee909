import asyncio

from chanbot.agent.loop import QUERY_LIMIT_MESSAGE, SCHEDULED_TASK_PROMPT, AgentLoop
from chanbot.bus.events import InboundMessage
from chanbot.bus.queue import MessageBus
from chanbot.providers.base import EngineReply
from chanbot.quota.authority import QuotaCheck
from chanbot.quota.gate import QuotaGate
from chanbot.scheduler.service import SchedulerService
from chanbot.scheduler.types import Trigger
from chanbot.session.manager import SessionManager
from conftest import T0, FakeAuthority, FakeEngine


def make_loop(tmp_path, clock, directory, store, engine=None, authority=None):
    engine = engine or FakeEngine()
    sessions = SessionManager(tmp_path / "sessions.json", engine, clock=clock)
    quota = QuotaGate(authority) if authority else None
    scheduler = SchedulerService(
        store, sessions=sessions, quota=quota, tenant_for=directory.tenant_for, clock=clock
    )
    loop = AgentLoop(
        bus=MessageBus(), engine=engine, sessions=sessions,
        scheduler=scheduler, quota=quota, directory=directory,
    )
    scheduler.on_task = loop.run_scheduled
    return loop, scheduler


# 测试实时消息使用通道会话并上报用量
async def test_message_uses_channel_session(tmp_path, clock, directory, store) -> None:
    engine = FakeEngine(cost=0.03)
    authority = FakeAuthority()
    loop, _ = make_loop(tmp_path, clock, directory, store, engine, authority)

    reply = await loop._process_message(InboundMessage(
        channel_id="c1", sender_id="u1", content="hello", metadata={"message_id": "m1"},
    ))
    await loop.process_direct("again", channel_id="c1")

    assert reply.content == "done: hello"
    assert reply.reply_to == "m1"
    assert len(engine.created) == 1
    assert {handle for handle, _ in engine.calls} == {"conv_1"}
    assert authority.track_calls == [("guild-1", "discord_message", 0.03, True)] * 2
    assert "schedule_one_time" in loop.tools


# 测试被配额阻止的租户收到提示且不调用引擎
async def test_blocked_tenant_gets_limit_message(tmp_path, clock, directory, store) -> None:
    engine = FakeEngine()
    authority = FakeAuthority([QuotaCheck(blocked=True, can_proceed=False)])
    loop, _ = make_loop(tmp_path, clock, directory, store, engine, authority)

    assert await loop.process_direct("hello", channel_id="c1") == QUERY_LIMIT_MESSAGE
    assert engine.calls == []
    assert authority.track_calls == []


# 测试引擎错误记为失败的用量
async def test_engine_error_tracked_as_failure(tmp_path, clock, directory, store) -> None:
    authority = FakeAuthority()
    loop, _ = make_loop(tmp_path, clock, directory, store, FakeEngine(fail=True), authority)

    reply = await loop.process_direct("hello", channel_id="c1")
    assert reply.startswith("Error calling LLM")
    assert authority.track_calls == [("guild-1", "discord_message", 0.0, False)]


# 测试调度任务通过总线投递到所属通道
async def test_scheduled_task_delivered_to_channel(tmp_path, clock, directory, store) -> None:
    engine = FakeEngine(cost=0.5)
    authority = FakeAuthority()
    loop, scheduler = make_loop(tmp_path, clock, directory, store, engine, authority)
    task_id = scheduler.schedule(Trigger.at(T0 + 60_000), "Post the summary", channel_id="c7")

    clock.advance(60_000)
    await scheduler.run_task(task_id)

    msg = await loop.bus.consume_outbound()
    assert msg.channel_id == "c7"
    assert msg.content == "done: " + SCHEDULED_TASK_PROMPT.format(instruction="Post the summary")
    assert authority.track_calls == [("guild-1", "scheduled_task", 0.5, True)]
    assert scheduler.get(task_id) is None
    assert loop.sessions.get_active("c7") is not None


class SchedulingEngine(FakeEngine):
    """收到 "schedule me" 时稍后调用 schedule_recurring 的引擎。"""

    async def invoke(self, handle, instruction, system_prompt=None, tools=None) -> EngineReply:
        self.calls.append((handle, instruction))
        if instruction == "schedule me":
            await asyncio.sleep(0.05)
            result = await tools.execute("schedule_recurring", {
                "name": "standup",
                "cron_expression": "0 9 * * 1",
                "timezone": "UTC",
                "task": "Post the standup reminder",
            })
            return EngineReply(content=result, cost=self.cost)
        return EngineReply(content=f"done: {instruction}", cost=self.cost)


# 测试交错处理的消息各自使用自己的通道调用工具
async def test_interleaved_messages_keep_their_channel(tmp_path, clock, directory, store) -> None:
    loop, scheduler = make_loop(tmp_path, clock, directory, store, SchedulingEngine())

    await asyncio.gather(
        loop._process_message(InboundMessage(channel_id="chanA", sender_id="u1", content="schedule me")),
        loop._process_message(InboundMessage(channel_id="chanB", sender_id="u2", content="hello")),
    )

    assert [t.channel_id for t in scheduler.list_tasks()] == ["chanA"]
    assert scheduler.list_tasks("chanB") == []
