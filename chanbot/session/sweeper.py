"""归档清扫服务 - 定期归档不活跃的会话。"""

import asyncio

from loguru import logger

from chanbot.session.manager import SessionManager

# 默认间隔：每天一次
DEFAULT_SWEEP_INTERVAL_S = 24 * 60 * 60

# 默认阈值：30 天未活跃
DEFAULT_ARCHIVE_AFTER_DAYS = 30


class ArchiveSweeper:
    """
    定期归档服务。

    按固定间隔调用 SessionManager.archive_old_sessions，
    与调度器的触发循环互不依赖。
    """

    def __init__(
        self,
        sessions: SessionManager,
        threshold_days: float = DEFAULT_ARCHIVE_AFTER_DAYS,
        interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        enabled: bool = True,
    ):
        self.sessions = sessions
        self.threshold_days = threshold_days
        self.interval_s = interval_s
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """启动清扫服务。"""
        if not self.enabled:
            logger.info("会话归档已禁用")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"会话归档已启动（每 {self.interval_s} 秒，阈值 {self.threshold_days} 天）")

    def stop(self) -> None:
        """停止清扫服务。"""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        """主清扫循环。"""
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"会话归档错误：{e}")

    def _tick(self) -> int:
        count = self.sessions.archive_old_sessions(self.threshold_days)
        if count:
            logger.info(f"归档清扫：已归档 {count} 个会话")
        else:
            logger.debug("归档清扫：没有需要归档的会话")
        return count

    async def trigger_now(self) -> int:
        """手动触发一次清扫。"""
        return self._tick()
