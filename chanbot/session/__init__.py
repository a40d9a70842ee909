"""会话管理模块。"""

from chanbot.session.manager import Session, SessionManager
from chanbot.session.sweeper import ArchiveSweeper

__all__ = ["Session", "SessionManager", "ArchiveSweeper"]
