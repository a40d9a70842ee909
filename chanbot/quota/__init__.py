"""用于限制交互和定时任务执行的配额闸门。"""

from chanbot.quota.authority import HttpQuotaAuthority, QuotaAuthority, QuotaAuthorityError
from chanbot.quota.gate import QuotaGate, QuotaState

__all__ = ["QuotaGate", "QuotaState", "QuotaAuthority", "HttpQuotaAuthority", "QuotaAuthorityError"]
