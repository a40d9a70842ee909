"""编排循环：实时消息和调度任务的处理入口。"""

import asyncio
from typing import Callable

from loguru import logger

from chanbot.agent.context import ContextBuilder
from chanbot.agent.tools.registry import ToolRegistry
from chanbot.agent.tools.scheduling import scheduling_tools
from chanbot.bus.events import InboundMessage, OutboundMessage
from chanbot.bus.queue import MessageBus
from chanbot.channels.base import ChannelDirectory
from chanbot.providers.base import ConversationEngine, EngineReply, estimate_cost
from chanbot.quota.gate import QuotaGate
from chanbot.scheduler.service import SchedulerService
from chanbot.scheduler.types import ScheduledTask
from chanbot.session.manager import Session, SessionManager

QUERY_LIMIT_MESSAGE = (
    "This server has reached its query limit. "
    "Upgrade the plan or wait for the quota to reset to keep using the bot."
)

SCHEDULED_TASK_PROMPT = """Execute this scheduled task. Perform the actions using available tools, then report what was done.

Task: {instruction}"""


class AgentLoop:
    """
    编排循环。

    实时消息：配额检查 -> 获取通道会话 -> 调用对话引擎 -> 上报用量 -> 回复。
    调度任务由 SchedulerService 通过 run_scheduled 回调进入同一个引擎，
    结果经消息总线投递到任务所属的通道。
    """

    def __init__(
        self,
        bus: MessageBus,
        engine: ConversationEngine,
        sessions: SessionManager,
        scheduler: SchedulerService | None = None,
        quota: QuotaGate | None = None,
        directory: ChannelDirectory | None = None,
    ):
        self.bus = bus
        self.engine = engine
        self.sessions = sessions
        self.scheduler = scheduler
        self.quota = quota
        self.directory = directory
        self.context = ContextBuilder(directory)
        self.tools = ToolRegistry()
        self._running = False

        if scheduler:
            for tool in scheduling_tools(scheduler):
                self.tools.register(tool)

    @property
    def tenant_for(self) -> Callable[[str], str]:
        if self.directory:
            return self.directory.tenant_for
        return lambda channel_id: ""

    async def run(self) -> None:
        """运行编排循环，处理来自总线的消息。"""
        self._running = True
        logger.info("编排循环已启动")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                response = await self._process_message(msg)
                if response:
                    await self.bus.publish_outbound(response)
            except Exception as e:
                logger.error(f"处理消息时出错：{e}")
                await self.bus.publish_outbound(OutboundMessage(
                    channel_id=msg.channel_id,
                    content=f"Sorry, I ran into an error: {e}",
                    transport=msg.transport,
                ))

    def stop(self) -> None:
        """停止编排循环。"""
        self._running = False
        logger.info("编排循环正在停止")

    async def _invoke(self, session: Session, channel_id: str, instruction: str) -> EngineReply:
        # 每次调用使用绑定通道的视图，交错执行的调用之间不共享通道
        return await self.engine.invoke(
            session.handle,
            instruction,
            system_prompt=self.context.build_system_prompt(channel_id),
            tools=self.tools.for_channel(channel_id),
        )

    async def _process_message(self, msg: InboundMessage) -> OutboundMessage | None:
        """
        处理单条传入消息。

        返回:
            回复消息。租户被配额阻止时返回配额提示。
        """
        preview = msg.content[:80] + "..." if len(msg.content) > 80 else msg.content
        logger.info(f"正在处理来自 {msg.channel_id}:{msg.sender_id} 的消息：{preview}")

        tenant_id = self.tenant_for(msg.channel_id)
        if self.quota and not await self.quota.can_proceed(tenant_id):
            logger.info(f"租户 {tenant_id} 已达到配额上限，拒绝处理消息")
            return OutboundMessage(
                channel_id=msg.channel_id,
                content=QUERY_LIMIT_MESSAGE,
                transport=msg.transport,
                reply_to=msg.metadata.get("message_id"),
            )

        success = False
        cost = 0.0
        try:
            session = await self.sessions.get_or_create_session(msg.channel_id)
            reply = await self._invoke(session, msg.channel_id, msg.content)
            cost = reply.cost if reply.cost is not None else estimate_cost(reply.usage)
            success = not reply.is_error
            if success:
                self.sessions.touch(session.id)
        finally:
            if self.quota:
                await self.quota.track_usage(tenant_id, "discord_message", cost, success)

        preview = reply.content[:120] + "..." if len(reply.content) > 120 else reply.content
        logger.info(f"对 {msg.channel_id}:{msg.sender_id} 的回复：{preview}")

        return OutboundMessage(
            channel_id=msg.channel_id,
            content=reply.content,
            transport=msg.transport,
            reply_to=msg.metadata.get("message_id"),
        )

    async def run_scheduled(self, task: ScheduledTask, session: Session | None) -> float:
        """
        执行一个到期的调度任务，并把结果投递到任务所属的通道。

        返回:
            本次执行的费用。

        异常:
            RuntimeError: 对话引擎返回错误。
        """
        if session is None:
            session = await self.sessions.get_or_create_session(task.channel_id)

        reply = await self._invoke(
            session, task.channel_id, SCHEDULED_TASK_PROMPT.format(instruction=task.instruction)
        )
        if reply.is_error:
            raise RuntimeError(reply.content)

        await self.bus.deliver(task.channel_id, reply.content)
        return reply.cost if reply.cost is not None else estimate_cost(reply.usage)

    async def process_direct(self, content: str, channel_id: str = "cli", sender_id: str = "user") -> str:
        """
        直接处理消息（用于 CLI）。

        返回:
            引擎的回复内容。
        """
        msg = InboundMessage(channel_id=channel_id, sender_id=sender_id, content=content, transport="cli")
        response = await self._process_message(msg)
        return response.content if response else ""
