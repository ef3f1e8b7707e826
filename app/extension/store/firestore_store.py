# -*- coding: utf-8 -*-
"""
# @Time    : 2025/11/13 23:59
# @Author  : Pedro
# @File    : firestore_store.py
# @Software: PyCharm

Firestore VoucherStore
------------------------------------------------------
✅ transactional + transaction(max_attempts=1)：重试策略交给上层 (transaction_helper)
✅ FieldFilter 查询 / Increment 自增
✅ on_snapshot 实时订阅（单文档 / 查询）
"""
from typing import Callable, Iterable, List, Optional

from google.api_core import exceptions as gexc
from google.cloud.firestore_v1 import FieldFilter, Increment as FsIncrement, Query
from google.cloud.firestore_v1 import transactional

from app.pedro.exception import ConflictAborted
from app.extension.store.base import (
    Document, Filter, Increment, Transaction, Unsubscribe, VoucherStore, validate_filters,
)


def _snap_to_dict(snap) -> Optional[Document]:
    if not snap.exists:
        return None
    return {**(snap.to_dict() or {}), "id": snap.id}


def _build_query(db, collection: str, filters: Iterable[Filter]):
    query = db.collection(collection)
    for field, op, value in validate_filters(filters):
        query = query.where(filter=FieldFilter(field, op, value))
    return query


def _shape(query, order_by: Optional[str], descending: bool, limit: Optional[int]):
    if order_by:
        query = query.order_by(order_by, direction=Query.DESCENDING if descending else Query.ASCENDING)
    if limit is not None:
        query = query.limit(limit)
    return query


class FirestoreTransaction(Transaction):

    def __init__(self, db, transaction):
        self._db = db
        self._tx = transaction

    def _ref(self, collection: str, doc_id: str):
        return self._db.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return _snap_to_dict(self._ref(collection, doc_id).get(transaction=self._tx))

    def query(self, collection: str, filters: Iterable[Filter] = (), limit: Optional[int] = None) -> List[Document]:
        query = _build_query(self._db, collection, filters)
        if limit is not None:
            query = query.limit(limit)
        return [_snap_to_dict(s) for s in self._tx.get(query)]

    def new_id(self, collection: str) -> str:
        return self._db.collection(collection).document().id

    def put(self, collection: str, doc_id: str, data: Document, merge: bool = False) -> None:
        self._tx.set(self._ref(collection, doc_id), data, merge=merge)

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        converted = {
            k: FsIncrement(v.amount) if isinstance(v, Increment) else v
            for k, v in fields.items()
        }
        self._tx.update(self._ref(collection, doc_id), converted)

    def delete(self, collection: str, doc_id: str) -> None:
        self._tx.delete(self._ref(collection, doc_id))


class FirestoreVoucherStore(VoucherStore):
    name = "firestore"

    def __init__(self, client=None):
        self._db = client

    @property
    def db(self):
        if self._db is None:
            from app.extension.google_tools.firebase_admin_service import firestore_client
            self._db = firestore_client()
        return self._db

    # =====================================================
    # ✅ 事务（单次尝试，冲突 → ConflictAborted）
    # =====================================================
    def transact(self, fn):
        transaction = self.db.transaction(max_attempts=1)

        @transactional
        def _wrapped(tx):
            return fn(FirestoreTransaction(self.db, tx))

        try:
            return _wrapped(transaction)
        except gexc.Aborted as e:
            raise ConflictAborted() from e
        except ValueError as e:
            # SDK 用完尝试次数后会把 Aborted 包成 ValueError
            if isinstance(e.__cause__, gexc.Aborted):
                raise ConflictAborted() from e
            raise

    # =====================================================
    # ✅ 事务外读取
    # =====================================================
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return _snap_to_dict(self.db.collection(collection).document(doc_id).get())

    def query(self, collection, filters=(), *, order_by=None, descending=False, limit=None) -> List[Document]:
        query = _shape(_build_query(self.db, collection, filters), order_by, descending, limit)
        return [_snap_to_dict(s) for s in query.stream()]

    # =====================================================
    # 📡 实时订阅 (on_snapshot)
    # =====================================================
    def watch(self, collection: str, doc_id: str, callback: Callable[[Optional[Document]], None]) -> Unsubscribe:
        ref = self.db.collection(collection).document(doc_id)

        def _on_snapshot(docs, changes, read_time):
            callback(_snap_to_dict(docs[0]) if docs else None)

        watch = ref.on_snapshot(_on_snapshot)
        return watch.unsubscribe

    def watch_query(self, collection, callback, filters=(), *, order_by=None, descending=False, limit=None) -> Unsubscribe:
        query = _shape(_build_query(self.db, collection, filters), order_by, descending, limit)

        def _on_snapshot(docs, changes, read_time):
            # docs 已按查询排序
            callback([_snap_to_dict(d) for d in docs])

        watch = query.on_snapshot(_on_snapshot)
        return watch.unsubscribe
