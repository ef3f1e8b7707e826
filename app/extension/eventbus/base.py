"""
# @Time    : 2025/10/28 21:54
# @Author  : Pedro
# @File    : base.py
# @Software: PyCharm

进程内事件总线：券事件（claimed / granted / redeemed）→ 通知等副作用
发布发生在事务提交之后，监听器失败只记日志，不影响已提交的业务结果
"""
from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventBus:

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, event_name: str):
        """装饰器：订阅事件"""
        def register(fn: Handler) -> Handler:
            self._handlers.setdefault(event_name, []).append(fn)
            return fn
        return register

    def handlers(self, event_name: str) -> List[Handler]:
        return list(self._handlers.get(event_name, ()))

    async def publish(self, event_name: str, data: Dict[str, Any]) -> int:
        """依次调用监听器，返回成功执行的个数"""
        delivered = 0
        for fn in self.handlers(event_name):
            try:
                await fn(data)
            except Exception as e:
                logger.opt(exception=e).warning(f"⚠️ [{event_name}] {getattr(fn, '__name__', fn)} 执行失败: {e}")
                continue
            delivered += 1
        return delivered

