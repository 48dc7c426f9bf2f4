from __future__ import annotations

"""
Celery 任务：切换 / 计费事件的消费者。

事件由 CeleryEventPublisher 通过 send_task 投递；使用进程内队列时，同样的处理函数通过
dispatch_event 订阅到 QueueEventPublisher 上。消费失败只记录日志，不会影响已提交的会话状态。
"""

from typing import Any

from celery import shared_task
from pydantic import ValidationError

from switchyard.logging_config import logger
from switchyard.schemas.events import CostCalculated, ProviderSwitched, SwitchyardEvent


def record_provider_switched(event: ProviderSwitched) -> dict[str, Any]:
    logger.info(
        "analytics: conversation=%s switched %s/%s -> %s/%s type=%s reason=%s at=%s",
        event.conversation_id,
        event.from_provider,
        event.from_model,
        event.to_provider,
        event.to_model,
        event.switch_type,
        event.reason,
        event.timestamp.isoformat(),
    )
    return {
        "event": ProviderSwitched.event_name,
        "conversation_id": event.conversation_id,
        "to_provider": event.to_provider,
        "switch_type": event.switch_type,
    }


def record_cost_calculated(event: CostCalculated) -> dict[str, Any]:
    logger.info(
        "analytics: conversation=%s cost=%s %s provider=%s model=%s in=%d out=%d",
        event.conversation_id,
        event.cost,
        event.currency,
        event.provider,
        event.model,
        event.input_tokens,
        event.output_tokens,
    )
    return {
        "event": CostCalculated.event_name,
        "conversation_id": event.conversation_id,
        "provider": event.provider,
        "cost": event.cost,
    }


def dispatch_event(event: SwitchyardEvent) -> dict[str, Any] | None:
    if isinstance(event, ProviderSwitched):
        return record_provider_switched(event)
    if isinstance(event, CostCalculated):
        return record_cost_calculated(event)
    logger.warning("analytics: unsupported event type %s", type(event).__name__)
    return None


@shared_task(name="tasks.analytics.provider_switched")
def provider_switched_task(payload: dict[str, Any]) -> dict[str, Any] | None:
    try:
        event = ProviderSwitched.model_validate(payload)
    except ValidationError as exc:
        logger.warning("analytics: dropping malformed provider_switched payload: %s", exc)
        return None
    return record_provider_switched(event)


@shared_task(name="tasks.analytics.cost_calculated")
def cost_calculated_task(payload: dict[str, Any]) -> dict[str, Any] | None:
    try:
        event = CostCalculated.model_validate(payload)
    except ValidationError as exc:
        logger.warning("analytics: dropping malformed cost_calculated payload: %s", exc)
        return None
    return record_cost_calculated(event)


__all__ = [
    "cost_calculated_task",
    "dispatch_event",
    "provider_switched_task",
    "record_cost_calculated",
    "record_provider_switched",
]
