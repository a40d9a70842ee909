"""调度器和时间解析的异常类型。"""


class SchedulerError(Exception):
    """调度器错误的基类。"""


class InvalidTrigger(SchedulerError, ValueError):
    """触发器格式错误（cron 表达式无效或一次性时间不在未来）。"""


class TimeResolutionError(ValueError):
    """自然语言时间解析错误的基类。"""


class InvalidTimezone(TimeResolutionError):
    """时区不是有效的 IANA 标识符。"""

    def __init__(self, timezone: str, examples: list[str]):
        self.timezone = timezone
        self.examples = examples
        super().__init__(
            f'Invalid timezone: "{timezone}". Must be a valid IANA timezone '
            f'(e.g., {", ".join(examples[:3])}).'
        )


class UnparseableTime(TimeResolutionError):
    """无法从输入中解析出任何时间。"""

    def __init__(self, text: str, examples: list[str]):
        self.text = text
        self.examples = examples
        lines = "\n".join(f'  - "{ex}"' for ex in examples)
        super().__init__(f'Could not parse "{text}". Examples of valid inputs:\n{lines}')


class TimeInPast(TimeResolutionError):
    """解析出的时间不晚于参考时间。"""

    def __init__(self, resolved, reference):
        self.resolved = resolved
        self.reference = reference
        super().__init__(
            f'Parsed time "{resolved.isoformat()}" is in the past. '
            f"Current time: {reference.isoformat()}"
        )
