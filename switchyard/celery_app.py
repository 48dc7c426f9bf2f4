from __future__ import annotations

"""
Celery 应用实例。

切换 / 计费事件通过 send_task 投递到这里注册的 analytics 任务。
默认使用 Redis 作为 broker 和 result backend，连接信息通过 .env 中的
CELERY_BROKER_URL / CELERY_RESULT_BACKEND 配置。

使用方式（在项目根目录下）::

    celery -A switchyard.celery_app.celery_app worker -l info
"""

from celery import Celery
from celery.signals import beat_init, worker_process_init

from switchyard.logging_config import setup_logging
from switchyard.settings import settings

celery_app = Celery(
    "switchyard",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_default_queue=settings.celery_task_default_queue,
    timezone=settings.celery_timezone,
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    imports=(
        "switchyard.tasks",
        "switchyard.tasks.analytics",
    ),
)

# 仅导入 celery_app（不启动 worker）时 Celery 不会加载任务模块，这里强制导入，确保 tasks.* 已注册。
celery_app.autodiscover_tasks(["switchyard"], force=True)
celery_app.loader.import_default_modules()


@worker_process_init.connect
def init_worker_logging(**kwargs):
    """在 worker 进程初始化时配置应用日志。"""
    setup_logging()


@beat_init.connect
def init_beat_logging(**kwargs):
    setup_logging()


__all__ = ["celery_app"]
