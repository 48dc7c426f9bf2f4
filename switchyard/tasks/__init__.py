from __future__ import annotations

"""
Celery 任务定义入口。

- debug_ping: 验证 worker 是否正常工作；
- analytics.*: 消费切换 / 计费事件（见 switchyard.tasks.analytics）。
"""

from celery import shared_task

from switchyard.logging_config import logger


@shared_task(name="tasks.debug_ping")
def debug_ping() -> str:
    """
    用法示例:
        celery -A switchyard.celery_app.celery_app call tasks.debug_ping
    """

    logger.info("Celery debug_ping task executed")
    return "pong"


__all__ = ["debug_ping"]
