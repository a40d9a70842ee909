"""按通道管理对话会话的生命周期。"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Literal

from loguru import logger

from chanbot.providers.base import ConversationEngine

DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Session:
    """绑定到通道的对话会话。"""
    id: str
    channel_id: str
    handle: str  # 对话引擎的不透明句柄
    created_at_ms: int
    last_active_at_ms: int
    status: Literal["active", "archived"] = "active"
    archived_at_ms: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


def _session_to_dict(s: Session) -> dict[str, Any]:
    return {
        "id": s.id,
        "channelId": s.channel_id,
        "handle": s.handle,
        "createdAtMs": s.created_at_ms,
        "lastActiveAtMs": s.last_active_at_ms,
        "status": s.status,
        "archivedAtMs": s.archived_at_ms,
    }


def _session_from_dict(d: dict[str, Any]) -> Session:
    return Session(
        id=d["id"],
        channel_id=d["channelId"],
        handle=d["handle"],
        created_at_ms=d.get("createdAtMs", 0),
        last_active_at_ms=d.get("lastActiveAtMs", 0),
        status=d.get("status", "active"),
        archived_at_ms=d.get("archivedAtMs"),
    )


class SessionManager:
    """
    会话管理器。

    每个通道任何时候最多有一个活跃会话。归档只追加：
    已归档的会话不会被重新激活，通道的下一次交互会创建新会话。
    归档不会删除对话引擎中的状态。
    """

    def __init__(
        self,
        store_path: Path,
        engine: ConversationEngine,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store_path = store_path
        self.engine = engine
        self.clock = clock
        self._sessions: dict[str, Session] | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, channel_id: str) -> asyncio.Lock:
        lock = self._locks.get(channel_id)
        if lock is None:
            lock = self._locks[channel_id] = asyncio.Lock()
        return lock

    def _load(self) -> dict[str, Session]:
        """从磁盘加载会话。"""
        if self._sessions is not None:
            return self._sessions

        self._sessions = {}
        if self.store_path.exists():
            try:
                data = json.loads(self.store_path.read_text(encoding="utf-8"))
                for d in data.get("sessions", []):
                    session = _session_from_dict(d)
                    self._sessions[session.id] = session
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"无法加载会话存储：{e}")
                self._sessions = {}

        return self._sessions

    def _save(self, sessions: list[Session]) -> None:
        """将会话写入磁盘。I/O 错误会向调用者传播。"""
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        data = {"version": 1, "sessions": [_session_to_dict(s) for s in sessions]}
        tmp = self.store_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self.store_path)

    def _commit(self, updated: dict[str, Session]) -> None:
        # 先写入磁盘，成功后再更新内存
        sessions = self._load()
        merged = {**sessions, **updated}
        self._save(list(merged.values()))
        sessions.update(updated)

    def get(self, session_id: str) -> Session | None:
        """按 ID 获取会话。"""
        return self._load().get(session_id)

    def get_active(self, channel_id: str) -> Session | None:
        """获取通道的活跃会话。"""
        for session in self._load().values():
            if session.channel_id == channel_id and session.is_active:
                return session
        return None

    def list_sessions(self, channel_id: str | None = None) -> list[Session]:
        """列出会话（按创建顺序）。"""
        sessions = list(self._load().values())
        if channel_id is not None:
            sessions = [s for s in sessions if s.channel_id == channel_id]
        return sessions

    async def get_or_create_session(self, channel_id: str) -> Session:
        """
        获取通道的活跃会话，不存在时创建一个。

        这是唯一的会话创建路径。

        参数:
            channel_id: 通道标识符。

        返回:
            通道的活跃会话。
        """
        async with self._lock(channel_id):
            existing = self.get_active(channel_id)
            if existing:
                return existing

            handle = await self.engine.create_session()
            now = self.clock()
            session = Session(
                id=f"sess_{now}_{uuid.uuid4().hex}",
                channel_id=channel_id,
                handle=handle,
                created_at_ms=now,
                last_active_at_ms=now,
            )
            self._commit({session.id: session})
            logger.info(f"已为通道 {channel_id} 创建会话 {session.id}")
            return session

    def touch(self, session_id: str) -> bool:
        """更新会话的最后活跃时间。会话不存在时返回 False。"""
        session = self.get(session_id)
        if not session:
            return False
        self._commit({session_id: replace(session, last_active_at_ms=self.clock())})
        return True

    def archive_old_sessions(self, threshold_days: float) -> int:
        """
        归档超过 threshold_days 天未活跃的会话。

        返回:
            本次新归档的会话数量。
        """
        now = self.clock()
        cutoff = now - int(threshold_days * DAY_MS)
        stale = {
            s.id: replace(s, status="archived", archived_at_ms=now)
            for s in self._load().values()
            if s.is_active and s.last_active_at_ms < cutoff
        }
        if not stale:
            return 0

        self._commit(stale)
        logger.info(f"已归档 {len(stale)} 个不活跃的会话（超过 {threshold_days} 天）")
        return len(stale)

    def archive_channel(self, channel_id: str) -> bool:
        """归档通道的活跃会话（用于通道被删除时）。"""
        session = self.get_active(channel_id)
        if not session:
            return False
        self._commit({session.id: replace(session, status="archived", archived_at_ms=self.clock())})
        logger.info(f"已归档通道 {channel_id} 的会话 {session.id}")
        return True

    def get_active_count(self) -> int:
        """获取活跃会话的数量。"""
        return sum(1 for s in self._load().values() if s.is_active)
