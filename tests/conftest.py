from pathlib import Path

import pytest

from chanbot.channels.base import ChannelDirectory
from chanbot.providers.base import ConversationEngine, EngineReply
from chanbot.quota.authority import QuotaAuthority, QuotaAuthorityError, QuotaCheck, UsageReport
from chanbot.scheduler.store import ScheduleStore

# 2024-06-01T12:00:00Z
T0 = 1717243200000


class FakeClock:
    def __init__(self, now_ms: int = T0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeEngine(ConversationEngine):
    def __init__(self, cost: float = 0.01, fail: bool = False):
        self.cost = cost
        self.fail = fail
        self.created: list[str] = []
        self.calls: list[tuple[str, str]] = []

    async def create_session(self) -> str:
        handle = f"conv_{len(self.created) + 1}"
        self.created.append(handle)
        return handle

    async def invoke(self, handle, instruction, system_prompt=None, tools=None) -> EngineReply:
        self.calls.append((handle, instruction))
        if self.fail:
            return EngineReply(content="Error calling LLM: boom", finish_reason="error")
        return EngineReply(content=f"done: {instruction}", cost=self.cost)


class FakeAuthority(QuotaAuthority):
    def __init__(self, checks: list[QuotaCheck] | None = None):
        self.checks = list(checks or [QuotaCheck()])
        self.check_calls: list[str] = []
        self.track_calls: list[tuple[str, str, float, bool]] = []
        self.report = UsageReport(queries_remaining=10)
        self.unreachable = False

    async def check_quota(self, tenant_id: str) -> QuotaCheck:
        self.check_calls.append(tenant_id)
        if self.unreachable:
            raise QuotaAuthorityError("connection refused")
        # 最后一个结果会被重复使用
        if len(self.checks) > 1:
            return self.checks.pop(0)
        return self.checks[0]

    async def track_usage(self, tenant_id, kind, cost, success) -> UsageReport:
        self.track_calls.append((tenant_id, kind, cost, success))
        if self.unreachable:
            raise QuotaAuthorityError("connection refused")
        return self.report


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def directory(tmp_path: Path) -> ChannelDirectory:
    return ChannelDirectory(tmp_path / "workspace", default_tenant="guild-1")


@pytest.fixture
def store(directory: ChannelDirectory) -> ScheduleStore:
    return ScheduleStore(directory)
