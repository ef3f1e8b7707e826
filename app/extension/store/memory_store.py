"""
# @Time    : 2025/11/14 22:30
# @Author  : Pedro
# @File    : memory_store.py
# @Software: PyCharm

进程内 VoucherStore（本地开发 / 测试用）
------------------------------------------------------
乐观并发控制，语义对齐 Firestore 事务：
- 每个文档有版本号，事务记录读到的版本
- 每个集合有版本号，事务内 query 记录集合版本（防幻读）
- 提交时加锁校验，版本变化 → ConflictAborted，不写入任何数据
- 写操作缓冲到提交时一次性应用
"""
import copy
import itertools
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from app.pedro.exception import ConflictAborted
from app.extension.store.base import (
    Document, Filter, Increment, Transaction, Unsubscribe, VoucherStore, validate_filters,
)

_MISSING = object()
_DELETED = object()


def _matches(doc: Document, filters: List[Filter]) -> bool:
    for field, op, value in filters:
        current = doc.get(field, _MISSING)
        if current is _MISSING:
            return False
        try:
            if op == "==" and not current == value:
                return False
            if op == "!=" and not current != value:
                return False
            if op == "<" and not current < value:
                return False
            if op == "<=" and not current <= value:
                return False
            if op == ">" and not current > value:
                return False
            if op == ">=" and not current >= value:
                return False
            if op == "in" and current not in value:
                return False
        except TypeError:
            # None 与 datetime 等不可比较 → 不匹配（同 Firestore 按类型分桶）
            return False
    return True


class MemoryTransaction(Transaction):

    def __init__(self, store: "MemoryVoucherStore"):
        self._store = store
        self._doc_reads: Dict[Tuple[str, str], int] = {}
        self._collection_reads: Dict[str, int] = {}
        self._writes: List[Tuple[str, str, str, Any, bool]] = []

    def _ensure_reading(self):
        if self._writes:
            raise RuntimeError("Firestore transactions require all reads to be executed before all writes.")

    # ---------- 读 ----------
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._ensure_reading()
        doc, version = self._store._read(collection, doc_id)
        self._doc_reads.setdefault((collection, doc_id), version)
        return doc

    def query(self, collection: str, filters: Iterable[Filter] = (), limit: Optional[int] = None) -> List[Document]:
        self._ensure_reading()
        docs, version = self._store._read_query(collection, validate_filters(filters), limit=limit)
        self._collection_reads.setdefault(collection, version)
        return docs

    def new_id(self, collection: str) -> str:
        return self._store._new_id()

    # ---------- 写（缓冲） ----------
    def put(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None:
        self._writes.append(("put", collection, doc_id, copy.deepcopy(data), merge))

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        self._writes.append(("update", collection, doc_id, copy.deepcopy(fields), False))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(("delete", collection, doc_id, None, False))


class MemoryVoucherStore(VoucherStore):
    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._versions: Dict[Tuple[str, str], int] = {}
        self._collection_versions: Dict[str, int] = defaultdict(int)
        self._clock = itertools.count(1)
        self._ids = itertools.count(1)
        self._watchers: Dict[Tuple[str, str], List[Callable]] = defaultdict(list)
        # collection → [(callback, filters, query 参数)]
        self._query_watchers: Dict[str, List[Tuple[Callable, List[Filter], Dict[str, Any]]]] = defaultdict(list)

    # =====================================================
    # 🔧 内部读
    # =====================================================
    def _new_id(self) -> str:
        with self._lock:
            return f"mem{next(self._ids):08d}"

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Document], int]:
        with self._lock:
            data = self._docs[collection].get(doc_id)
            version = self._versions.get((collection, doc_id), 0)
            if data is None:
                return None, version
            return {**copy.deepcopy(data), "id": doc_id}, version

    def _read_query(
            self,
            collection: str,
            filters: List[Filter],
            *,
            order_by: Optional[str] = None,
            descending: bool = False,
            limit: Optional[int] = None,
    ) -> Tuple[List[Document], int]:
        with self._lock:
            version = self._collection_versions[collection]
            docs = [
                {**copy.deepcopy(data), "id": doc_id}
                for doc_id, data in self._docs[collection].items()
                if _matches(data, filters)
            ]
        if order_by:
            present = [d for d in docs if d.get(order_by) is not None]
            missing = [d for d in docs if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            docs = present + missing
        if limit is not None:
            docs = docs[:limit]
        return docs, version

    # =====================================================
    # ✅ 事务
    # =====================================================
    def transact(self, fn):
        tx = MemoryTransaction(self)
        result = fn(tx)
        if tx._writes:
            self._commit(tx)
        return result

    def _commit(self, tx: MemoryTransaction):
        with self._lock:
            for key, version in tx._doc_reads.items():
                if self._versions.get(key, 0) != version:
                    raise ConflictAborted()
            for collection, version in tx._collection_reads.items():
                if self._collection_versions[collection] != version:
                    raise ConflictAborted()

            # 先在副本上计算结果，任何一步失败都不落库
            staged: Dict[Tuple[str, str], Any] = {}
            for kind, collection, doc_id, data, merge in tx._writes:
                key = (collection, doc_id)
                current = staged.get(key, self._docs[collection].get(doc_id, _DELETED))
                if kind == "delete":
                    staged[key] = _DELETED
                elif kind == "put":
                    base = dict(current) if (merge and current is not _DELETED) else {}
                    base.update(data)
                    staged[key] = base
                else:
                    if current is _DELETED:
                        raise LookupError(f"No document to update: {collection}/{doc_id}")
                    updated = dict(current)
                    for field, value in data.items():
                        if isinstance(value, Increment):
                            updated[field] = (updated.get(field) or 0) + value.amount
                        else:
                            updated[field] = value
                    staged[key] = updated

            notifications = []
            for (collection, doc_id), data in staged.items():
                version = next(self._clock)
                if data is _DELETED:
                    self._docs[collection].pop(doc_id, None)
                else:
                    self._docs[collection][doc_id] = data
                self._versions[(collection, doc_id)] = version
                self._collection_versions[collection] = version
                for callback in list(self._watchers[(collection, doc_id)]):
                    snapshot = None if data is _DELETED else {**copy.deepcopy(data), "id": doc_id}
                    notifications.append((callback, snapshot))

            for collection in {collection for collection, _ in staged}:
                for callback, filters, options in list(self._query_watchers[collection]):
                    docs, _ = self._read_query(collection, filters, **options)
                    notifications.append((callback, docs))

        # 回调在锁外执行
        for callback, snapshot in notifications:
            callback(snapshot)

    # =====================================================
    # ✅ 事务外读取
    # =====================================================
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc, _ = self._read(collection, doc_id)
        return doc

    def query(self, collection, filters=(), *, order_by=None, descending=False, limit=None) -> List[Document]:
        docs, _ = self._read_query(
            collection, validate_filters(filters), order_by=order_by, descending=descending, limit=limit
        )
        return docs

    # =====================================================
    # 📡 实时订阅
    # =====================================================
    def watch(self, collection: str, doc_id: str, callback: Callable[[Optional[Document]], None]) -> Unsubscribe:
        key = (collection, doc_id)
        with self._lock:
            self._watchers[key].append(callback)
            current, _ = self._read(collection, doc_id)
        callback(current)

        def unsubscribe():
            with self._lock:
                if callback in self._watchers[key]:
                    self._watchers[key].remove(callback)

        return unsubscribe

    def watch_query(self, collection, callback, filters=(), *, order_by=None, descending=False, limit=None) -> Unsubscribe:
        entry = (callback, validate_filters(filters), {"order_by": order_by, "descending": descending, "limit": limit})
        with self._lock:
            self._query_watchers[collection].append(entry)
            current, _ = self._read_query(collection, entry[1], **entry[2])
        callback(current)

        def unsubscribe():
            with self._lock:
                if entry in self._query_watchers[collection]:
                    self._query_watchers[collection].remove(entry)

        return unsubscribe
