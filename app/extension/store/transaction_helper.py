# @Time    : 2025/11/8 02:58
# @Author  : Pedro
# @File    : transaction_helper.py
# @Software: PyCharm
"""
🔥 事务统一执行器
------------------------------------------------
- store.transact 是同步调用 → 放到线程池执行
- ConflictAborted：抖动指数退避后重试（有上限）
- 业务异常：直接抛出，不重试
- 超时：抛 OperationTimeout（结果未知，线程内事务仍可能已提交）
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, TypeVar

from loguru import logger

from app.pedro.exception import ConflictAborted, OperationTimeout
from app.extension.store.base import Transaction, VoucherStore

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.05
    max_delay: float = 1.0
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, voucher_config) -> "RetryPolicy":
        return cls(
            max_attempts=voucher_config.tx_max_attempts,
            base_delay=voucher_config.tx_base_delay,
            max_delay=voucher_config.tx_max_delay,
            timeout=voucher_config.operation_timeout,
        )


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """full jitter：[0, min(max_delay, base * 2^attempt)]"""
    return random.uniform(0, min(max_delay, base_delay * (2 ** attempt)))


async def _retry_transaction(store, fn, name, max_attempts, base_delay, max_delay):
    for attempt in range(1, max_attempts + 1):
        try:
            return await asyncio.to_thread(store.transact, fn)
        except ConflictAborted:
            if attempt >= max_attempts:
                logger.warning(f"[TX] ❌ {name} 冲突重试 {max_attempts} 次仍失败")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.debug(f"[TX] {name} 第 {attempt} 次冲突，{delay * 1000:.1f}ms 后重试")
            await asyncio.sleep(delay)


async def run_transaction(
        store: VoucherStore,
        fn: Callable[[Transaction], T],
        *,
        name: str = "transaction",
        policy: RetryPolicy = RetryPolicy(),
) -> T:
    """
    ✅ 运行事务（冲突自动重试 + 整体超时）
    用法：
        def _tx(tx): ...
        result = await run_transaction(store, _tx, name="redeem", policy=policy)
    """
    try:
        return await asyncio.wait_for(
            _retry_transaction(store, fn, name, policy.max_attempts, policy.base_delay, policy.max_delay),
            timeout=policy.timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"[TX] ⏱ {name} 超过 {policy.timeout}s 未完成，结果未知")
        raise OperationTimeout()
