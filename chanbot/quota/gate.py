"""配额闸门：本地缓存 + 远程对账。"""

import asyncio
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from chanbot.quota.authority import QuotaAuthority, QuotaAuthorityError, QuotaCheck


@dataclass
class QuotaState:
    """租户配额状态的本地缓存视图。"""
    tier: Literal["free", "starter", "pro", "business"] | str = "free"
    is_blocked: bool = False
    queries_remaining: int = 0
    queries_total: int = 0

    @classmethod
    def from_check(cls, check: QuotaCheck) -> "QuotaState":
        return cls(
            tier=check.tier,
            is_blocked=check.blocked,
            queries_remaining=check.queries_remaining,
            queries_total=check.queries_total,
        )


class QuotaGate:
    """
    在执行前检查配额并在执行后上报用量。

    - 读穿透：首次使用时从远程服务拉取状态；缓存未被阻止时直接放行
    - 被阻止时每次都向远程服务重新确认（租户可能已在外部升级）
    - 写穿透：上报用量后更新剩余次数，上报失败只记录日志

    缓存只在内存中，进程重启后重新同步。
    """

    def __init__(self, authority: QuotaAuthority, fail_open: bool = True):
        self.authority = authority
        self.fail_open = fail_open
        self._states: dict[str, QuotaState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def get_state(self, tenant_id: str) -> QuotaState | None:
        """获取租户的缓存状态（未加载时为 None）。"""
        return self._states.get(tenant_id)

    def invalidate(self, tenant_id: str | None = None) -> None:
        """丢弃一个租户（或全部租户）的缓存状态。"""
        if tenant_id is None:
            self._states.clear()
        else:
            self._states.pop(tenant_id, None)

    async def can_proceed(self, tenant_id: str) -> bool:
        """
        检查租户是否可以继续执行。

        参数:
            tenant_id: 租户（计费单位）标识符。

        返回:
            可以执行时返回 True。远程服务不可达时按 fail_open 策略决定。
        """
        async with self._lock(tenant_id):
            state = self._states.get(tenant_id)

            if state is None:
                try:
                    check = await self.authority.check_quota(tenant_id)
                except QuotaAuthorityError as e:
                    logger.warning(f"配额服务不可达（租户 {tenant_id}）：{e}")
                    return self.fail_open
                self._states[tenant_id] = QuotaState.from_check(check)
                return check.can_proceed and not check.blocked

            if not state.is_blocked:
                return True

            # 已被阻止：重新确认
            try:
                check = await self.authority.check_quota(tenant_id)
            except QuotaAuthorityError as e:
                logger.warning(f"配额重新检查失败（租户 {tenant_id}）：{e}")
                return self.fail_open

            state.is_blocked = check.blocked
            state.queries_remaining = check.queries_remaining
            state.queries_total = check.queries_total or state.queries_total
            state.tier = check.tier or state.tier

            if not check.blocked:
                logger.info(f"租户 {tenant_id} 已解除配额限制")
            return check.can_proceed

    async def track_usage(self, tenant_id: str, kind: str, cost: float, success: bool) -> None:
        """
        上报一次用量。

        只尝试一次，任何失败都只记录日志，不会向调用者抛出。
        """
        try:
            report = await self.authority.track_usage(tenant_id, kind, cost, success)
        except Exception as e:
            logger.error(f"跟踪用量失败（租户 {tenant_id}，{kind}）：{e}")
            return

        async with self._lock(tenant_id):
            state = self._states.get(tenant_id)
            if state is None:
                return
            state.queries_remaining = report.queries_remaining
            if report.limit_reached:
                state.is_blocked = True
                logger.warning(f"租户 {tenant_id} 已达到配额上限")
