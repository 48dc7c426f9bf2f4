"""
会话级互斥锁。

同一会话的切换、记账、追加消息必须串行执行；不同会话之间互不影响。
- KeyedLock：进程内实现，每个 key 一把 RLock，按引用计数回收；
- RedisKeyedLock：多进程 / 多实例部署时使用 redis-py 的分布式锁。
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

from redis import Redis
from redis.exceptions import LockError

from switchyard.exceptions import ConversationStateError
from switchyard.logging_config import logger
from switchyard.settings import settings


class ConversationLock(Protocol):
    def hold(self, key: str) -> ContextManager[None]: ...


class KeyedLock:
    def __init__(self, *, timeout: float | None = None) -> None:
        self.timeout = settings.lock_timeout_seconds if timeout is None else timeout
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=self.timeout):
                raise ConversationStateError(
                    f"Timed out waiting for lock on conversation {key}",
                    details={"conversation_id": key, "timeout": self.timeout},
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def active_keys(self) -> list[str]:
        with self._guard:
            return sorted(self._locks)


class RedisKeyedLock:
    def __init__(
        self,
        client: Redis,
        *,
        timeout: float | None = None,
        prefix: str = "switchyard:conversation-lock:",
    ) -> None:
        self.client = client
        self.timeout = settings.lock_timeout_seconds if timeout is None else timeout
        self.prefix = prefix

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.client.lock(
            f"{self.prefix}{key}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire():
            raise ConversationStateError(
                f"Timed out waiting for lock on conversation {key}",
                details={"conversation_id": key, "timeout": self.timeout},
            )
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # 锁已过期被其他实例拿走；本次操作的事务已经结束，这里只记录。
                logger.warning("Redis lock for conversation %s expired before release", key)


def build_conversation_lock() -> KeyedLock | RedisKeyedLock:
    backend = (settings.lock_backend or "local").lower()
    if backend == "redis":
        logger.info("Using Redis conversation lock backend at %s", settings.redis_url)
        return RedisKeyedLock(Redis.from_url(settings.redis_url))
    return KeyedLock()


__all__ = ["ConversationLock", "KeyedLock", "RedisKeyedLock", "build_conversation_lock"]
