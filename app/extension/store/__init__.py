"""
存储后端注册入口
"""
from app.extension.store.base import Increment, Transaction, VoucherStore


def build_store(settings) -> VoucherStore:
    """根据 settings.store.backend 构建存储后端"""
    backend = settings.store.backend
    if backend == "memory":
        from app.extension.store.memory_store import MemoryVoucherStore
        return MemoryVoucherStore()
    if backend == "firestore":
        from app.extension.store.firestore_store import FirestoreVoucherStore
        return FirestoreVoucherStore()
    raise ValueError(f"未知的存储后端: {backend}")


__all__ = ["Increment", "Transaction", "VoucherStore", "build_store"]
