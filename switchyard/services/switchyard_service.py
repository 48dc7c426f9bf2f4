"""
对外暴露的统一入口。

SwitchyardService 把定价、上下文规划、历史、计费和切换编排组装在一起，共享同一个驱动注册表、
会话锁和事件发布器；HTTP 路由和 Celery 任务都只通过它访问切换子系统。
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from switchyard.exceptions import ProviderUnavailableError
from switchyard.logging_config import logger
from switchyard.models import (
    Conversation,
    CostRecord,
    Message,
    ModelPricingRecord,
    ProviderSession,
    ProviderSwitchAttempt,
)
from switchyard.provider.driver import DriverError, DriverResponse, TokenUsage
from switchyard.provider.registry import (
    DriverRegistry,
    build_default_registry,
    get_provider,
    get_provider_model,
)
from switchyard.schemas.analysis import CostAnalysis, FallbackAnalysis, HistoryFilters, ProviderStatistics
from switchyard.schemas.pricing import CostBreakdown, PricingCandidate, PricingComparisonEntry, PricingDescriptor
from switchyard.schemas.context import FallbackPreference
from switchyard.schemas.switching import AvailableProvider, FallbackCandidate, FallbackStrategy, SwitchOptions

from . import conversation_service
from . import provider_history_service as history
from .context_preservation_service import ContextPreservationPlanner
from .conversation_lock import ConversationLock, build_conversation_lock
from .cost_tracker_service import CostTracker
from .event_bus import EventPublisher, build_event_publisher
from .pricing_service import PricingService
from .provider_switching_service import DEFAULT_OPTIONS, ProviderSwitchingService


class SwitchyardService:
    def __init__(
        self,
        *,
        driver_registry: DriverRegistry | None = None,
        planner: ContextPreservationPlanner | None = None,
        pricing: PricingService | None = None,
        lock: ConversationLock | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.drivers = driver_registry or build_default_registry()
        self.lock = lock or build_conversation_lock()
        self.publisher = publisher if publisher is not None else build_event_publisher()
        self.planner = planner or ContextPreservationPlanner()
        self.pricing = pricing or PricingService(driver_registry=self.drivers)
        self.switching = ProviderSwitchingService(
            self.drivers,
            self.planner,
            lock=self.lock,
            publisher=self.publisher,
            pricing=self.pricing,
        )
        self.costs = CostTracker(self.pricing, lock=self.lock, publisher=self.publisher)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self,
        db: Session,
        provider: str,
        model: str | None = None,
        *,
        title: str | None = None,
        system_prompt: str | None = None,
    ) -> Conversation:
        return conversation_service.create_conversation(
            db, provider, model, title=title, system_prompt=system_prompt
        )

    def get_conversation(self, db: Session, conversation_id: UUID | str) -> Conversation:
        return conversation_service.get_conversation(db, conversation_id)

    def append_message(
        self,
        db: Session,
        conversation: Conversation,
        role: str,
        content: str,
        *,
        token_count: int | None = None,
    ) -> Message:
        return conversation_service.append_message(
            db, conversation, role, content, token_count=token_count, lock=self.lock
        )

    def get_messages(self, db: Session, conversation: Conversation) -> list[Message]:
        return conversation_service.get_messages(db, conversation)

    def send_message(
        self,
        db: Session,
        conversation: Conversation,
        content: str,
        *,
        options: Mapping[str, Any] | None = None,
    ) -> tuple[Message, CostRecord]:
        """
        追加用户消息，按当前模型的上下文窗口规划历史并发给当前 Provider，
        写入回复后按回复的 token 用量记账。
        """
        self.append_message(db, conversation, "user", content)

        provider = get_provider(db, conversation.provider_name)
        model = get_provider_model(db, provider, conversation.model_name) if provider is not None else None
        driver = self.drivers.get(conversation.provider_name, provider=provider)
        if driver is None or model is None:
            raise ProviderUnavailableError(
                conversation.provider_name, "no driver or model configured", model=conversation.model_name
            )

        messages = self.get_messages(db, conversation)
        plan = self.planner.plan(
            conversation,
            model.context_window,
            target_provider=conversation.provider_name,
            target_model=conversation.model_name,
            messages=messages,
        )
        context = self.planner.build_driver_context(conversation, plan, messages=messages)
        request_options = {"model": conversation.model_name, **dict(options or {})}
        try:
            response = driver.send_message(context, request_options)
        except (DriverError, httpx.HTTPError) as exc:
            logger.warning(
                "Conversation %s: send_message to %s failed: %s",
                conversation.id,
                conversation.provider_name,
                exc,
            )
            raise ProviderUnavailableError(
                conversation.provider_name, str(exc), model=conversation.model_name
            ) from exc

        reply = self.append_message(
            db,
            conversation,
            "assistant",
            response.content,
            token_count=response.token_usage.output_tokens,
        )
        record = self.track_message_cost(db, conversation, response, message=reply)
        return reply, record

    # ------------------------------------------------------------------
    # Switching
    # ------------------------------------------------------------------

    def switch_provider(
        self,
        db: Session,
        conversation: Conversation,
        target_provider: str,
        target_model: str | None = None,
        options: SwitchOptions = DEFAULT_OPTIONS,
    ) -> Conversation:
        return self.switching.switch_provider(db, conversation, target_provider, target_model, options)

    def switch_with_fallback(
        self,
        db: Session,
        conversation: Conversation,
        candidates: Sequence[FallbackCandidate | tuple[str, str | None] | str],
        options: SwitchOptions | None = None,
        *,
        max_attempts: int | None = None,
    ) -> Conversation:
        return self.switching.switch_with_fallback(
            db, conversation, candidates, options, max_attempts=max_attempts
        )

    def get_available_providers(self, db: Session, conversation: Conversation) -> list[AvailableProvider]:
        return self.switching.get_available_providers(db, conversation)

    def build_fallback_candidates(
        self,
        db: Session,
        conversation: Conversation,
        strategy: FallbackStrategy | str = FallbackStrategy.AUTO,
    ) -> list[FallbackCandidate]:
        return self.switching.build_fallback_candidates(db, conversation, strategy)

    def execute_auto_fallback(
        self,
        db: Session,
        conversation: Conversation,
        error: BaseException | str,
        *,
        strategy: FallbackStrategy | str = FallbackStrategy.AUTO,
        max_attempts: int | None = None,
    ) -> Conversation:
        return self.switching.execute_auto_fallback(
            db, conversation, error, strategy=strategy, max_attempts=max_attempts
        )

    def set_fallback_preferences(
        self,
        db: Session,
        conversation: Conversation,
        preferences: Sequence[FallbackPreference | str],
    ) -> Conversation:
        return conversation_service.set_fallback_preferences(db, conversation, preferences, lock=self.lock)

    # ------------------------------------------------------------------
    # Costs
    # ------------------------------------------------------------------

    def track_message_cost(
        self,
        db: Session,
        conversation: Conversation,
        response: DriverResponse | TokenUsage,
        *,
        message: Message | None = None,
    ) -> CostRecord:
        return self.costs.track_message_cost(db, conversation, response, message=message)

    def get_cost_analysis(self, db: Session, conversation: Conversation) -> CostAnalysis:
        return self.costs.get_cost_analysis(db, conversation)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, db: Session, conversation: Conversation) -> list[ProviderSession]:
        return history.get_history(db, conversation)

    def get_switch_attempts(
        self, db: Session, conversation: Conversation, *, attempt_group: UUID | None = None
    ) -> list[ProviderSwitchAttempt]:
        return history.get_switch_attempts(db, conversation, attempt_group=attempt_group)

    def get_provider_statistics(self, db: Session, filters: HistoryFilters | None = None) -> ProviderStatistics:
        return history.get_statistics(db, filters)

    def get_fallback_analysis(self, db: Session, filters: HistoryFilters | None = None) -> FallbackAnalysis:
        return history.get_fallback_analysis(db, filters)

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def resolve_pricing(self, db: Session, provider: str, model: str) -> PricingDescriptor:
        return self.pricing.resolve(db, provider, model)

    def calculate_cost(
        self,
        db: Session,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        *,
        units: float = 1.0,
    ) -> CostBreakdown:
        return self.pricing.calculate_cost(db, provider, model, input_tokens, output_tokens, units=units)

    def compare_pricing(
        self,
        db: Session,
        candidates: Iterable[PricingCandidate | tuple[str, str]],
        input_tokens: int,
        output_tokens: int,
    ) -> list[PricingComparisonEntry]:
        return self.pricing.compare_pricing(db, list(candidates), input_tokens, output_tokens)

    def store_pricing_override(
        self, db: Session, provider: str, model: str, payload: Mapping[str, Any]
    ) -> PricingDescriptor:
        return self.pricing.store_pricing_override(db, provider, model, payload)

    def get_pricing_history(self, db: Session, provider: str, model: str) -> list[ModelPricingRecord]:
        return self.pricing.get_pricing_history(db, provider, model)

    def close(self) -> None:
        self.drivers.close()
        shutdown = getattr(self.publisher, "shutdown", None)
        if callable(shutdown):
            shutdown(wait=False)


__all__ = ["SwitchyardService"]
