"""远程配额服务客户端。"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger


class QuotaAuthorityError(Exception):
    """远程配额服务不可达或返回了无效响应。"""


@dataclass
class QuotaCheck:
    """checkQuota 调用的结果。"""
    tier: str = "free"
    blocked: bool = False
    can_proceed: bool = True
    queries_remaining: int = 0
    queries_total: int = 0
    reason: str | None = None


@dataclass
class UsageReport:
    """trackUsage 调用的结果。"""
    queries_remaining: int = 0
    limit_reached: bool = False


class QuotaAuthority(ABC):
    """
    远程配额服务的抽象接口。

    只能通过请求/响应调用访问，两个操作都可能因网络问题失败，
    失败时抛出 QuotaAuthorityError。
    """

    @abstractmethod
    async def check_quota(self, tenant_id: str) -> QuotaCheck:
        """查询租户当前的配额状态。"""
        pass

    @abstractmethod
    async def track_usage(
        self, tenant_id: str, kind: str, cost: float, success: bool
    ) -> UsageReport:
        """上报一次用量。"""
        pass


class HttpQuotaAuthority(QuotaAuthority):
    """
    基于 HTTP 函数端点的配额服务客户端。

    请求体为 {"data": {...}}，响应体为 {"result": {...}}。
    """

    def __init__(
        self,
        service_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """关闭内部创建的 HTTP 客户端。"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _call(self, function_name: str, data: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.service_url}/{function_name}"
        try:
            response = await self._get_client().post(url, json={"data": data})
        except httpx.HTTPError as e:
            raise QuotaAuthorityError(f"调用 {function_name} 失败：{e}") from e

        if response.is_error:
            raise QuotaAuthorityError(
                f"调用 {function_name} 失败：{response.status_code} - {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise QuotaAuthorityError(f"{function_name} 返回了无效的 JSON") from e

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict):
            raise QuotaAuthorityError(f"{function_name} 响应缺少 result 字段")
        return result

    async def check_quota(self, tenant_id: str) -> QuotaCheck:
        result = await self._call("checkQueryLimit", {"guildId": tenant_id})
        blocked = bool(result.get("blocked", False))
        check = QuotaCheck(
            tier=result.get("deploymentType") or "free",
            blocked=blocked,
            can_proceed=bool(result.get("canProceed", not blocked)),
            queries_remaining=result.get("queriesRemaining") or 0,
            queries_total=result.get("totalQueries") or 0,
            reason=result.get("reason"),
        )
        logger.debug(f"配额检查 {tenant_id}：blocked={check.blocked}，剩余 {check.queries_remaining}")
        return check

    async def track_usage(
        self, tenant_id: str, kind: str, cost: float, success: bool
    ) -> UsageReport:
        result = await self._call("trackQueryLimit", {
            "guildId": tenant_id,
            "type": kind,
            "cost": cost,
            "success": success,
        })
        return UsageReport(
            queries_remaining=result.get("queriesRemaining") or 0,
            limit_reached=bool(result.get("limitReached", False)),
        )
