"""使用 dateparser 的自然语言时间解析。"""

from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateparser
from dateparser.search import search_dates

from chanbot.scheduler.errors import InvalidTimezone, TimeInPast, UnparseableTime

EXAMPLE_PHRASES = [
    "tomorrow at 9pm",
    "in 10 minutes",
    "in 2 hours",
    "next Monday at 3pm",
    "December 25th at noon",
    "Friday at 5:30pm",
    "in 30 seconds",
    "next week",
]

EXAMPLE_TIMEZONES = [
    "America/New_York",
    "America/Los_Angeles",
    "America/Chicago",
    "Europe/London",
    "Europe/Paris",
    "Asia/Tokyo",
    "Australia/Sydney",
    "UTC",
]


def example_phrases() -> list[str]:
    """获取用于错误消息的自然语言时间示例。"""
    return list(EXAMPLE_PHRASES)


def validate_timezone(timezone: str) -> bool:
    """检查时区是否为有效的 IANA 标识符。"""
    if not timezone or not isinstance(timezone, str):
        return False
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _as_utc(value: datetime) -> datetime:
    # 无时区的参考时间按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc)


def resolve(
    text: str,
    timezone: str,
    reference_time: datetime | None = None,
) -> datetime:
    """
    将自然语言时间解析为绝对时间。

    参数:
        text: 自然语言输入（例如 "tomorrow at 9pm"、"in 10 minutes"）。
        timezone: 用于解释输入的 IANA 时区。
        reference_time: 解析的参考时间，默认为当前时间。

    返回:
        UTC 时区的绝对时间，严格晚于参考时间。

    异常:
        InvalidTimezone: 时区无效。
        UnparseableTime: 无法解析出任何候选时间。
        TimeInPast: 解析结果不晚于参考时间。
    """
    if not validate_timezone(timezone):
        raise InvalidTimezone(timezone, EXAMPLE_TIMEZONES)

    zone = ZoneInfo(timezone)
    reference = _as_utc(reference_time or datetime.now(dt_timezone.utc))

    settings = {
        # dateparser 以目标时区的挂钟时间作为相对基准
        "RELATIVE_BASE": reference.astimezone(zone).replace(tzinfo=None),
        "TIMEZONE": timezone,
        "RETURN_AS_TIMEZONE_AWARE": False,
        "PREFER_DATES_FROM": "future",
    }

    parsed = dateparser.parse(text, languages=["en"], settings=settings)
    if parsed is None:
        # 整句无法解析时取第一个候选
        candidates = search_dates(text, languages=["en"], settings=settings)
        if candidates:
            parsed = candidates[0][1]

    if parsed is None:
        raise UnparseableTime(text, example_phrases())

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    resolved = parsed.astimezone(dt_timezone.utc)

    if resolved <= reference:
        raise TimeInPast(resolved, reference)

    return resolved


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit if count == 1 else unit + 's'}"


def format_time_until(target: datetime, now: datetime | None = None) -> str:
    """将距目标时间的剩余时间格式化为易读字符串（例如 "2 hours 30 minutes"）。"""
    now = _as_utc(now or datetime.now(dt_timezone.utc))
    diff_s = int((_as_utc(target) - now).total_seconds())
    if diff_s < 0:
        return "overdue"

    minutes, seconds = divmod(diff_s, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    parts = []
    if days:
        parts.append(_plural(days, "day"))
    if hours:
        parts.append(_plural(hours, "hour"))
    # 超过一天时不显示分钟，超过一小时时不显示秒
    if minutes and not days:
        parts.append(_plural(minutes, "minute"))
    if seconds and not days and not hours:
        parts.append(_plural(seconds, "second"))

    return " ".join(parts) if parts else "less than 1 second"
