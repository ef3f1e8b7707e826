"""
# @Time    : 2025/11/14 21:40
# @Author  : Pedro
# @File    : base.py
# @Software: PyCharm

VoucherStore 抽象层
------------------------------------------------------
✅ transact(fn)：单文档原子读-改-写（冲突时抛 ConflictAborted）
✅ get / query：事务外只读
✅ watch：实时订阅单个文档
✅ watch_query：实时订阅查询结果（后台券列表）
✅ Increment：原子自增标记（Firestore Increment 等价物）

约定：
- 文档统一为 dict，读取结果带 "id" 键
- 事务内所有读操作必须在写操作之前（Firestore 规则）
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

# (field, op, value)，op ∈ == != < <= > >= in
Filter = Tuple[str, str, Any]
Document = Dict[str, Any]
Unsubscribe = Callable[[], None]

SUPPORTED_OPS = ("==", "!=", "<", "<=", ">", ">=", "in")


@dataclass(frozen=True)
class Increment:
    """原子自增，只能用于 Transaction.update"""
    amount: int = 1


class Transaction:
    """事务句柄（由具体后端实现）"""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def query(self, collection: str, filters: Iterable[Filter] = (), limit: Optional[int] = None) -> List[Document]:
        raise NotImplementedError

    def new_id(self, collection: str) -> str:
        raise NotImplementedError

    def put(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError


class VoucherStore:
    """所有存储后端的基类"""
    name: str = "base"

    def transact(self, fn: Callable[[Transaction], T]) -> T:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def query(
            self,
            collection: str,
            filters: Iterable[Filter] = (),
            *,
            order_by: Optional[str] = None,
            descending: bool = False,
            limit: Optional[int] = None,
    ) -> List[Document]:
        raise NotImplementedError

    def watch(self, collection: str, doc_id: str, callback: Callable[[Optional[Document]], None]) -> Unsubscribe:
        raise NotImplementedError

    def watch_query(
            self,
            collection: str,
            callback: Callable[[List[Document]], None],
            filters: Iterable[Filter] = (),
            *,
            order_by: Optional[str] = None,
            descending: bool = False,
            limit: Optional[int] = None,
    ) -> Unsubscribe:
        """订阅后立即回调一次当前结果，之后集合每次变化都回调完整结果"""
        raise NotImplementedError


def validate_filters(filters: Iterable[Filter]) -> List[Filter]:
    checked = []
    for field, op, value in filters:
        if op not in SUPPORTED_OPS:
            raise ValueError(f"unsupported filter operator: {op}")
        checked.append((field, op, value))
    return checked
