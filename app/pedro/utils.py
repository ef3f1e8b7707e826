"""
通用工具
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """服务器 UTC 时间（所有有效期判断的唯一时间来源）"""
    return datetime.now(timezone.utc)
