"""
切换 / 计费事件的投递。

事件只在数据库事务提交之后发布，投递是 fire-and-continue：broker 抖动或消费者异常只记录日志，
不会影响已经提交的会话状态，也不会拖慢调用方。
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Protocol

from switchyard.logging_config import logger
from switchyard.schemas.events import CostCalculated, ProviderSwitched, SwitchyardEvent
from switchyard.settings import settings

EventConsumer = Callable[[SwitchyardEvent], None]

TASK_NAMES: dict[str, str] = {
    ProviderSwitched.event_name: "tasks.analytics.provider_switched",
    CostCalculated.event_name: "tasks.analytics.cost_calculated",
}


class EventPublisher(Protocol):
    def publish(self, event: SwitchyardEvent) -> None: ...


class NullEventPublisher:
    def publish(self, event: SwitchyardEvent) -> None:
        logger.debug("Event %s dropped (EVENT_BACKEND=none)", event.event_name)


class CeleryEventPublisher:
    """
    通过 Celery send_task 投递事件。

    send_task 放到线程池里执行，避免 broker 连接抖动阻塞请求线程。
    """

    def __init__(self, celery_app: Any | None = None, *, max_workers: int = 2) -> None:
        self._celery_app = celery_app
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="switchyard-events")

    def _app(self) -> Any:
        if self._celery_app is None:
            from switchyard.celery_app import celery_app

            self._celery_app = celery_app
        return self._celery_app

    def _send(self, task_name: str, payload: dict[str, Any]) -> None:
        try:
            self._app().send_task(task_name, kwargs={"payload": payload}, ignore_result=True)
        except Exception:
            logger.warning("Failed to enqueue celery task=%s", task_name, exc_info=True)

    def publish(self, event: SwitchyardEvent) -> None:
        task_name = TASK_NAMES.get(event.event_name)
        if task_name is None:
            logger.warning("No celery task registered for event %s", event.event_name)
            return
        payload = event.model_dump(mode="json")
        try:
            self._executor.submit(self._send, task_name, payload)
        except RuntimeError:
            # 线程池已关闭（进程退出阶段），直接同步发送。
            self._send(task_name, payload)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class QueueEventPublisher:
    """
    进程内队列：publish 只负责入队，消费者由 drain() 或后台线程独立执行。

    单个消费者抛出的异常只记录日志，不影响其他消费者和后续事件。
    队列有上限，满了以后丢弃新事件并记录告警，publish 永不阻塞调用方。
    """

    def __init__(self, maxsize: int | None = None) -> None:
        limit = settings.event_queue_maxsize if maxsize is None else maxsize
        self._queue: "queue.Queue[SwitchyardEvent]" = queue.Queue(maxsize=max(0, limit))
        self._consumers: list[EventConsumer] = []
        self._consumers_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stopping = threading.Event()
        self.dropped = 0

    def subscribe(self, consumer: EventConsumer) -> None:
        with self._consumers_lock:
            self._consumers.append(consumer)

    def publish(self, event: SwitchyardEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning(
                "Event queue full (maxsize=%d), dropping %s event", self._queue.maxsize, event.event_name
            )

    def _dispatch(self, event: SwitchyardEvent) -> None:
        with self._consumers_lock:
            consumers = list(self._consumers)
        for consumer in consumers:
            try:
                consumer(event)
            except Exception:
                logger.warning(
                    "Event consumer %r failed for %s",
                    consumer,
                    event.event_name,
                    exc_info=True,
                )

    def drain(self) -> int:
        """同步处理当前队列中的所有事件，返回处理数量。"""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return count
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()
            count += 1

    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run, name="switchyard-event-queue", daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                event = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopping.set()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        # 停止后把残留事件同步处理完
        self.drain()


def safe_publish(publisher: EventPublisher | None, event: SwitchyardEvent) -> None:
    """发布事件；发布本身失败也只记录日志。"""
    if publisher is None:
        return
    try:
        publisher.publish(event)
    except Exception:
        logger.warning("Failed to publish %s event", event.event_name, exc_info=True)


def build_event_publisher() -> EventPublisher:
    backend = (settings.event_backend or "celery").lower()
    if backend == "queue":
        return QueueEventPublisher()
    if backend == "none":
        return NullEventPublisher()
    return CeleryEventPublisher()


__all__ = [
    "CeleryEventPublisher",
    "EventConsumer",
    "EventPublisher",
    "NullEventPublisher",
    "QueueEventPublisher",
    "TASK_NAMES",
    "build_event_publisher",
    "safe_publish",
]
