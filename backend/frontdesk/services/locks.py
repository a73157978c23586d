"""
按键串行化的锁注册表

同一房间（或同一预订）的读-改-写必须串行执行，
不同房间之间互不阻塞
"""
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator
import threading


class KeyedLocks:
    """为每个键懒创建一把互斥锁"""

    def __init__(self, namespace: str):
        self.namespace = namespace
        self._locks: Dict[Hashable, threading.RLock] = defaultdict(threading.RLock)
        self._registry_lock = threading.Lock()

    def _get(self, key: Hashable) -> threading.RLock:
        with self._registry_lock:
            return self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._get(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# 进程内共享：房间协调与预订重算各自一组锁
room_locks = KeyedLocks("room")
reservation_locks = KeyedLocks("reservation")
