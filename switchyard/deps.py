from __future__ import annotations

import threading
from collections.abc import Iterator

from sqlalchemy.orm import Session

from .db import get_db_session
from .services.switchyard_service import SwitchyardService

_service: SwitchyardService | None = None
_service_lock = threading.Lock()


def get_db() -> Iterator[Session]:
    """
    Provide a synchronous SQLAlchemy session.
    """
    yield from get_db_session()


def get_switchyard_service() -> SwitchyardService:
    """
    进程内共享的 SwitchyardService：驱动注册表、会话锁、定价缓存和事件发布器都需要在请求之间复用。

    测试中通过 app.dependency_overrides 替换为使用 Mock 驱动和内存队列的实例。
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = SwitchyardService()
    return _service


def reset_switchyard_service() -> None:
    global _service
    with _service_lock:
        service, _service = _service, None
    if service is not None:
        service.close()


__all__ = ["get_db", "get_switchyard_service", "reset_switchyard_service"]
