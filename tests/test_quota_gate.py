from chanbot.quota.authority import QuotaCheck, UsageReport
from chanbot.quota.gate import QuotaGate, QuotaState
from conftest import FakeAuthority


# 测试首次使用时从远程拉取并缓存
async def test_first_use_fetches_and_caches() -> None:
    authority = FakeAuthority([QuotaCheck(tier="pro", queries_remaining=50, queries_total=100)])
    gate = QuotaGate(authority)

    assert await gate.can_proceed("g1")
    assert await gate.can_proceed("g1")

    assert authority.check_calls == ["g1"]
    state = gate.get_state("g1")
    assert state.tier == "pro"
    assert state.queries_remaining == 50


# 测试被阻止时每次检查恰好重新确认一次
async def test_blocked_rechecks_once_per_call() -> None:
    blocked = QuotaCheck(blocked=True, can_proceed=False)
    authority = FakeAuthority([blocked, blocked, blocked])
    gate = QuotaGate(authority)

    assert not await gate.can_proceed("g1")
    assert len(authority.check_calls) == 1
    assert not await gate.can_proceed("g1")
    assert len(authority.check_calls) == 2
    assert not await gate.can_proceed("g1")
    assert len(authority.check_calls) == 3


# 测试租户升级后解除阻止
async def test_unblocked_after_upgrade() -> None:
    authority = FakeAuthority([
        QuotaCheck(blocked=True, can_proceed=False),
        QuotaCheck(tier="starter", blocked=False, can_proceed=True, queries_remaining=500),
    ])
    gate = QuotaGate(authority)

    assert not await gate.can_proceed("g1")
    assert await gate.can_proceed("g1")
    assert not gate.get_state("g1").is_blocked
    assert gate.get_state("g1").queries_remaining == 500

    # 解除阻止后不再访问远程服务
    assert await gate.can_proceed("g1")
    assert len(authority.check_calls) == 2


# 测试远程服务不可达时的放行策略
async def test_unreachable_authority_fail_open_policy() -> None:
    authority = FakeAuthority()
    authority.unreachable = True

    assert await QuotaGate(authority, fail_open=True).can_proceed("g1")
    assert not await QuotaGate(authority, fail_open=False).can_proceed("g1")


# 测试上报用量达到上限后阻止租户
async def test_track_usage_marks_blocked() -> None:
    authority = FakeAuthority([QuotaCheck(queries_remaining=1, queries_total=100)])
    gate = QuotaGate(authority)
    assert await gate.can_proceed("g1")

    authority.report = UsageReport(queries_remaining=0, limit_reached=True)
    authority.checks = [QuotaCheck(blocked=True, can_proceed=False)]
    await gate.track_usage("g1", "discord_message", 0.05, True)

    state = gate.get_state("g1")
    assert state.is_blocked
    assert state.queries_remaining == 0
    assert authority.track_calls == [("g1", "discord_message", 0.05, True)]

    assert not await gate.can_proceed("g1")
    assert len(authority.check_calls) == 2


# 测试上报失败不会抛出，也不会重试
async def test_track_usage_failure_is_swallowed() -> None:
    authority = FakeAuthority()
    authority.unreachable = True
    gate = QuotaGate(authority)

    await gate.track_usage("g1", "scheduled_task", 0.0, False)
    assert len(authority.track_calls) == 1
    assert gate.get_state("g1") is None


def test_invalidate() -> None:
    gate = QuotaGate(FakeAuthority())
    gate._states["g1"] = QuotaState()
    gate._states["g2"] = QuotaState()
    gate.invalidate("g1")
    assert "g1" not in gate._states and "g2" in gate._states
    gate.invalidate()
    assert gate._states == {}
