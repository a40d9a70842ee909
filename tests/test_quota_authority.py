import json

import httpx
import pytest

from chanbot.quota.authority import HttpQuotaAuthority, QuotaAuthorityError


def make_authority(handler) -> HttpQuotaAuthority:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpQuotaAuthority("https://quota.example.com/api/", client=client)


# 测试配额检查的请求和响应格式
async def test_check_quota_wire_format() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"result": {
            "deploymentType": "pro",
            "blocked": False,
            "canProceed": True,
            "queriesRemaining": 420,
            "totalQueries": 1000,
        }})

    check = await make_authority(handler).check_quota("guild-1")

    assert seen == [("/api/checkQueryLimit", {"data": {"guildId": "guild-1"}})]
    assert check.tier == "pro"
    assert check.can_proceed and not check.blocked
    assert check.queries_remaining == 420
    assert check.queries_total == 1000


# 测试用量上报的请求和响应格式
async def test_track_usage_wire_format() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"result": {"queriesRemaining": 0, "limitReached": True}})

    report = await make_authority(handler).track_usage("guild-1", "scheduled_task", 0.25, True)

    assert seen == [("/api/trackQueryLimit", {"data": {
        "guildId": "guild-1", "type": "scheduled_task", "cost": 0.25, "success": True,
    }})]
    assert report.limit_reached
    assert report.queries_remaining == 0


# 测试错误响应转换为 QuotaAuthorityError
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="internal error"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"error": "missing"}),
    ],
)
async def test_bad_responses_raise(response) -> None:
    authority = make_authority(lambda request: response)
    with pytest.raises(QuotaAuthorityError):
        await authority.check_quota("guild-1")


# 测试网络错误转换为 QuotaAuthorityError
async def test_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(QuotaAuthorityError):
        await make_authority(handler).track_usage("guild-1", "discord_message", 0.0, False)
