"""按通道调度并执行任务的调度服务。"""

import asyncio
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from croniter import croniter
from loguru import logger

from chanbot.scheduler.errors import InvalidTrigger
from chanbot.scheduler.store import ScheduleStore
from chanbot.scheduler.timeparse import validate_timezone
from chanbot.scheduler.types import ScheduledTask, Trigger

if TYPE_CHECKING:
    from chanbot.quota.gate import QuotaGate
    from chanbot.session.manager import Session, SessionManager

# 配额被阻止时一次性任务的重试间隔
ONE_TIME_RETRY_S = 60

TaskCallback = Callable[[ScheduledTask, "Session | None"], Awaitable[float | None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _normalize_cron(expr: str) -> str | None:
    """将 5/6 字段表达式转换为 croniter 格式（秒字段在末尾）。"""
    parts = expr.split()
    if len(parts) == 5:
        return " ".join(parts)
    if len(parts) == 6:
        # s m h dom mon dow -> m h dom mon dow s
        return " ".join(parts[1:] + parts[:1])
    return None


def is_valid_cron(expr: Any) -> bool:
    """检查 cron 表达式是否符合 5 或 6 字段语法。"""
    if not isinstance(expr, str):
        return False
    normalized = _normalize_cron(expr)
    return normalized is not None and croniter.is_valid(normalized)


def compute_next_run(trigger: Trigger, after_ms: int) -> int | None:
    """计算 after_ms 之后的下次触发时间（毫秒）。"""
    if trigger.kind == "at":
        return trigger.at_ms

    if trigger.kind == "cron" and trigger.expr:
        normalized = _normalize_cron(trigger.expr)
        if normalized is None:
            return None
        base = datetime.fromtimestamp(after_ms / 1000, tz=ZoneInfo(trigger.tz))
        next_time = croniter(normalized, base).get_next(datetime)
        return int(next_time.timestamp() * 1000)

    return None


class SchedulerService:
    """
    调度引擎。

    每个已启用的任务都有自己独立的计时器协程，保存在 _handles 中。
    这个注册表只是持久化记录的镜像：启动时从 ScheduleStore 重建，
    每次修改都先写入磁盘再布防/撤防。

    触发顺序：配额检查 -> 获取通道会话 -> 执行任务 -> 上报用量
    -> 更新 last_run -> 一次性任务删除。同一任务的触发严格串行。
    """

    def __init__(
        self,
        store: ScheduleStore,
        on_task: TaskCallback | None = None,
        sessions: "SessionManager | None" = None,
        quota: "QuotaGate | None" = None,
        tenant_for: Callable[[str], str] | None = None,
        clock: Callable[[], int] = _now_ms,
        one_time_retry_s: float = ONE_TIME_RETRY_S,
    ):
        self.store = store
        self.on_task = on_task  # 执行任务的回调，返回本次费用
        self.sessions = sessions
        self.quota = quota
        self.tenant_for = tenant_for or (lambda channel_id: "")
        self.clock = clock
        self.one_time_retry_s = one_time_retry_s
        self._tasks: dict[str, ScheduledTask] = {}
        self._loaded = False
        self._handles: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._detached: set[str] = set()  # 已移除但保留调度文档的通道
        self._running = False

    # ========== 持久化 ==========

    def _load(self) -> dict[str, ScheduledTask]:
        """从磁盘加载任务。"""
        if not self._loaded:
            self._tasks = {t.id: t for t in self.store.load_all()}
            self._loaded = True
        return self._tasks

    def _commit(
        self,
        channel_id: str,
        upsert: ScheduledTask | None = None,
        removed: str | None = None,
    ) -> None:
        """将修改写入通道文档，写入成功后才更新内存中的注册表。"""
        pending = dict(self._load())
        if removed:
            pending.pop(removed, None)
        if upsert:
            pending[upsert.id] = upsert

        channel_tasks = [t for t in pending.values() if t.channel_id == channel_id]
        if channel_id in self._detached:
            # 已移除通道的撤防任务只在磁盘上，写入时要一并保留
            known = {t.id for t in channel_tasks}
            kept = [
                t for t in self.store.load_channel(channel_id).tasks
                if t.id not in known and t.id != removed
            ]
            channel_tasks = kept + channel_tasks

        self.store.save_channel(channel_id, channel_tasks)
        self._tasks = pending

    def _record(self, task_id: str, **changes: Any) -> None:
        """记录一次触发的结果。任务在执行期间被删除时忽略。"""
        task = self._tasks.get(task_id)
        if not task:
            return
        updated = replace(task, updated_at_ms=self.clock(), **changes)
        try:
            self._commit(task.channel_id, upsert=updated)
        except OSError as e:
            logger.error(f"调度器：无法保存任务 {task_id} 的运行状态：{e}")

    def _drop_one_time(self, task_id: str) -> None:
        """一次性任务触发或最终失败后删除。"""
        try:
            self.remove(task_id)
        except OSError as e:
            logger.error(f"调度器：无法删除一次性任务 {task_id}：{e}")

    # ========== 布防 / 撤防 ==========

    def _lock(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    def _arm(self, task_id: str) -> None:
        """为任务创建计时器。服务未运行时只保留持久化记录。"""
        self._disarm(task_id)
        if not self._running:
            return
        task = self._tasks.get(task_id)
        if not task or not task.enabled or task.channel_id in self._detached:
            return
        self._handles[task_id] = asyncio.create_task(
            self._run_timer(task_id), name=f"chanbot-task-{task_id}"
        )

    def _disarm(self, task_id: str) -> None:
        """取消任务的计时器。正在执行的触发会继续完成。"""
        handle = self._handles.pop(task_id, None)
        if handle and not handle.done():
            handle.cancel()

    async def _run_timer(self, task_id: str) -> None:
        """单个任务的计时器循环。"""
        anchor = self.clock()
        retry_at: int | None = None

        try:
            while self._running:
                task = self._tasks.get(task_id)
                if not task or not task.enabled:
                    return

                if retry_at is not None:
                    fire_at = retry_at
                else:
                    fire_at = compute_next_run(task.trigger, anchor)
                if fire_at is None:
                    logger.warning(f"调度器：任务 '{task.name}' ({task_id}) 没有下次运行时间")
                    return

                # 上一次触发执行期间错过的时间点，在其完成后立即补触发一次
                now = self.clock()
                if fire_at < now:
                    fire_at = now
                if fire_at > now:
                    await asyncio.sleep((fire_at - now) / 1000)

                # shield：撤防只影响之后的触发，不中断当前执行
                status = await asyncio.shield(self._fire(task_id))

                if status == "skipped" and task.one_time:
                    retry_at = self.clock() + int(self.one_time_retry_s * 1000)
                    continue
                if task.one_time:
                    return

                retry_at = None
                anchor = fire_at
        except asyncio.CancelledError:
            pass

    # ========== 触发 ==========

    async def _fire(self, task_id: str, force: bool = False) -> str | None:
        """
        执行一次任务触发。

        任何异常都在这里捕获并记录，不会影响其他任务的计时器。

        返回:
            "ok"、"error"、"skipped"，任务不存在或已禁用时返回 None。
        """
        async with self._lock(task_id):
            task = self._tasks.get(task_id)
            if task is None or (not task.enabled and not force):
                return None

            tenant_id = self.tenant_for(task.channel_id)
            start_ms = self.clock()
            logger.info(f"调度器：正在执行任务 '{task.name}' ({task.id})")

            try:
                if self.quota and not await self.quota.can_proceed(tenant_id):
                    logger.info(f"调度器：跳过任务 '{task.name}' - 已达到配额上限")
                    self._record(task_id, last_status="skipped", last_error=None)
                    return "skipped"
            except Exception as e:
                logger.error(f"调度器：任务 '{task.name}' 配额检查失败：{e}")
                if task.one_time:
                    self._drop_one_time(task_id)
                else:
                    self._record(task_id, last_status="error", last_error=str(e))
                return "error"

            success = False
            cost = 0.0
            error: str | None = None
            try:
                session = None
                if self.sessions:
                    session = await self.sessions.get_or_create_session(task.channel_id)

                result = None
                if self.on_task:
                    result = await self.on_task(task, session)
                cost = float(result or 0.0)
                success = True

                if session:
                    try:
                        self.sessions.touch(session.id)
                    except OSError as e:
                        logger.warning(f"调度器：无法更新会话 {session.id} 的活跃时间：{e}")

                logger.info(f"调度器：任务 '{task.name}' 已完成")
            except Exception as e:
                error = str(e)
                logger.error(f"调度器：任务 '{task.name}' 执行失败：{e}")
            finally:
                if self.quota:
                    await self.quota.track_usage(tenant_id, "scheduled_task", cost, success)

            status = "ok" if success else "error"

            if task.one_time:
                self._drop_one_time(task_id)
            else:
                self._record(
                    task_id,
                    last_run_at_ms=start_ms,
                    last_status=status,
                    last_error=error,
                )

            return status

    # ========== 公共 API ==========

    async def start(self) -> None:
        """启动调度服务：从磁盘重建注册表并布防所有已启用的任务。"""
        self._running = True
        self._loaded = False
        tasks = self._load()
        for task_id, task in tasks.items():
            if task.enabled:
                self._arm(task_id)
        logger.info(f"调度服务已启动，包含 {len(tasks)} 个任务（{len(self._handles)} 个已布防）")

    def stop_all(self) -> None:
        """撤防所有计时器，保留持久化记录。"""
        self._running = False
        for task_id in list(self._handles):
            self._disarm(task_id)
        logger.info("调度服务已停止")

    def validate(self, trigger: Trigger | str) -> bool:
        """纯语法检查。接受 Trigger 或 cron 表达式字符串。"""
        if isinstance(trigger, str):
            return is_valid_cron(trigger)
        if trigger.kind == "cron":
            return is_valid_cron(trigger.expr) and validate_timezone(trigger.tz)
        if trigger.kind == "at":
            return isinstance(trigger.at_ms, int) and trigger.at_ms > 0 and validate_timezone(trigger.tz)
        return False

    def _check_trigger(self, trigger: Trigger) -> None:
        if not self.validate(trigger):
            if trigger.kind == "cron":
                raise InvalidTrigger(f"Invalid cron expression: {trigger.expr!r} ({trigger.tz})")
            raise InvalidTrigger(f"Invalid trigger: {trigger.describe()}")
        if trigger.kind == "at" and trigger.at_ms <= self.clock():
            raise InvalidTrigger(f"One-time trigger {trigger.at_ms} is not in the future")

    def schedule(
        self,
        trigger: Trigger,
        instruction: str,
        *,
        channel_id: str,
        name: str | None = None,
        one_time: bool | None = None,
        natural_time: str | None = None,
    ) -> str:
        """
        添加新任务。

        参数:
            trigger: cron 表达式或绝对时间。
            instruction: 触发时交给会话执行的指令。
            channel_id: 所属通道。
            name: 显示名称，默认取指令的前 30 个字符。
            one_time: 是否为一次性任务，"at" 触发器总是一次性的。
            natural_time: 一次性任务的原始自然语言输入。

        返回:
            新任务的 ID。

        异常:
            InvalidTrigger: 触发器无效，不会持久化。
        """
        self._check_trigger(trigger)
        tasks = self._load()

        task_id = f"task_{uuid.uuid4().hex[:8]}"
        while task_id in tasks:
            task_id = f"task_{uuid.uuid4().hex[:8]}"

        now = self.clock()
        task = ScheduledTask(
            id=task_id,
            name=name or instruction[:30],
            trigger=trigger,
            instruction=instruction,
            channel_id=channel_id,
            one_time=True if trigger.kind == "at" else bool(one_time),
            enabled=True,
            created_at_ms=now,
            updated_at_ms=now,
            natural_time=natural_time,
        )

        self._commit(channel_id, upsert=task)
        self._arm(task_id)
        logger.info(f"调度器：已添加任务 '{task.name}' ({task_id})：{trigger.describe()}")
        return task_id

    def list_tasks(self, channel_id: str | None = None) -> list[ScheduledTask]:
        """按创建顺序列出任务，可按通道过滤。"""
        tasks = list(self._load().values())
        if channel_id is not None:
            tasks = [t for t in tasks if t.channel_id == channel_id]
        return tasks

    def get(self, task_id: str) -> ScheduledTask | None:
        """按 ID 获取任务。"""
        return self._load().get(task_id)

    def remove(self, task_id: str) -> bool:
        """删除任务。任务不存在时什么也不做并返回 False。"""
        task = self._load().get(task_id)
        if not task:
            return False

        self._commit(task.channel_id, removed=task_id)
        self._disarm(task_id)
        logger.info(f"调度器：已移除任务 {task_id}")
        return True

    def update_schedule(self, task_id: str, trigger: Trigger) -> ScheduledTask:
        """
        更换任务的触发器，保留任务 ID、创建时间和运行历史。

        异常:
            KeyError: 任务不存在。
            InvalidTrigger: 新触发器无效。
        """
        task = self._load().get(task_id)
        if not task:
            raise KeyError(f"Task not found: {task_id}")
        self._check_trigger(trigger)

        updated = replace(
            task,
            trigger=trigger,
            one_time=True if trigger.kind == "at" else task.one_time,
            updated_at_ms=self.clock(),
        )
        self._commit(task.channel_id, upsert=updated)
        self._arm(task_id)
        logger.info(f"调度器：任务 {task_id} 的触发器已更新为 {trigger.describe()}")
        return updated

    def set_enabled(self, task_id: str, enabled: bool = True) -> ScheduledTask | None:
        """启用或禁用任务。禁用只撤防，保留持久化记录。"""
        task = self._load().get(task_id)
        if not task:
            return None

        updated = replace(task, enabled=enabled, updated_at_ms=self.clock())
        self._commit(task.channel_id, upsert=updated)
        if enabled:
            self._arm(task_id)
        else:
            self._disarm(task_id)
        return updated

    async def run_task(self, task_id: str, force: bool = False) -> bool:
        """手动运行任务（与计时器触发共享同一串行化路径）。"""
        task = self._load().get(task_id)
        if not task:
            return False
        if not force and not task.enabled:
            return False
        await self._fire(task_id, force=True)
        return True

    def add_channel(self, channel_id: str) -> int:
        """从磁盘重新加载通道的任务并布防，返回加载的任务数。"""
        self._load()
        self._detached.discard(channel_id)
        loaded = self.store.load_channel(channel_id).tasks
        for task in loaded:
            self._tasks[task.id] = task
            if task.enabled:
                self._arm(task.id)
        logger.info(f"调度器：已为通道 {channel_id} 加载 {len(loaded)} 个任务")
        return len(loaded)

    def remove_channel(self, channel_id: str) -> int:
        """
        通道被删除时撤防其所有任务。

        通道的调度文档保留在磁盘上，重新添加通道后可以恢复。
        之后为该通道添加的任务会与文档中已有的任务合并保存，但不会布防。
        """
        self._detached.add(channel_id)
        removed = [t.id for t in self._load().values() if t.channel_id == channel_id]
        for task_id in removed:
            self._disarm(task_id)
            self._tasks.pop(task_id, None)
        if removed:
            logger.info(f"调度器：已撤防通道 {channel_id} 的 {len(removed)} 个任务")
        return len(removed)

    def next_run_at(self, task: ScheduledTask) -> int | None:
        """计算任务的下次运行时间（毫秒）。"""
        if not task.enabled:
            return None
        return compute_next_run(task.trigger, self.clock())

    def status(self) -> dict:
        """获取服务状态。"""
        tasks = self._load()
        next_runs = [n for n in (self.next_run_at(t) for t in tasks.values()) if n]
        return {
            "enabled": self._running,
            "tasks": len(tasks),
            "armed": len(self._handles),
            "next_wake_at_ms": min(next_runs) if next_runs else None,
        }
