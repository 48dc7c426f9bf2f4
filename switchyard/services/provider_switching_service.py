"""
Provider 切换编排。

switch_provider 在会话锁内完成一次完整切换：
校验 Provider/模型 -> 询问驱动确认可用 -> 规划上下文 -> 开启新 session -> 更新绑定和切换日志 -> 提交。
任何一步失败都会回滚，会话绑定保持不变；事件只在提交之后发出。

switch_with_fallback 按优先级依次尝试候选，只有 ProviderUnavailableError 会被捕获并记为失败尝试，
参数错误（Provider/模型不存在等）直接向上抛出。
"""

from __future__ import annotations

import uuid
from typing import Iterable, Sequence

import httpx
from sqlalchemy.orm import Session

from switchyard.exceptions import (
    FallbackExhaustedError,
    InvalidSwitchRequestError,
    ModelNotFoundError,
    ProviderInactiveError,
    ProviderNotFoundError,
    ProviderUnavailableError,
)
from switchyard.logging_config import logger
from switchyard.models import Conversation, Provider, ProviderModel
from switchyard.provider.driver import DriverError
from switchyard.provider.registry import (
    DriverRegistry,
    active_models,
    get_provider,
    get_provider_model,
    list_active_providers,
    resolve_target_model,
)
from switchyard.schemas.context import ContextPreservationPlan, SwitchRecord
from switchyard.schemas.events import ProviderSwitched
from switchyard.schemas.switching import (
    AvailableModel,
    AvailableProvider,
    FallbackCandidate,
    FallbackStrategy,
    SwitchOptions,
    SwitchType,
    clip_reason,
)
from switchyard.settings import settings

from . import conversation_service
from . import provider_history_service as history
from .context_preservation_service import ContextPreservationPlanner
from .conversation_lock import ConversationLock, KeyedLock
from .event_bus import EventPublisher, safe_publish
from .pricing_service import PricingService

DEFAULT_OPTIONS = SwitchOptions()

# cost_optimized 排序时使用的参考用量
REFERENCE_INPUT_TOKENS = 1000
REFERENCE_OUTPUT_TOKENS = 1000


def _as_candidates(items: Iterable[FallbackCandidate | tuple[str, str | None] | str]) -> list[FallbackCandidate]:
    candidates: list[FallbackCandidate] = []
    for item in items:
        if isinstance(item, FallbackCandidate):
            candidates.append(item)
        elif isinstance(item, str):
            candidates.append(FallbackCandidate(provider=item))
        else:
            provider, model = item
            candidates.append(FallbackCandidate(provider=provider, model=model))
    return candidates


class ProviderSwitchingService:
    def __init__(
        self,
        driver_registry: DriverRegistry,
        planner: ContextPreservationPlanner | None = None,
        *,
        lock: ConversationLock | None = None,
        publisher: EventPublisher | None = None,
        pricing: PricingService | None = None,
    ) -> None:
        self.drivers = driver_registry
        self.pricing = pricing or PricingService(driver_registry=driver_registry)
        self.planner = planner or ContextPreservationPlanner()
        self.lock = lock or KeyedLock()
        self.publisher = publisher

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_target(
        self, db: Session, provider_name: str, model_name: str | None
    ) -> tuple[Provider, ProviderModel]:
        provider = get_provider(db, provider_name)
        if provider is None:
            raise ProviderNotFoundError(provider_name)
        if not provider.is_active:
            raise ProviderInactiveError(provider_name, provider.status)

        model = resolve_target_model(db, provider, model_name)
        if model is None:
            raise ModelNotFoundError(provider_name, model_name)
        return provider, model

    def _check_driver(
        self, provider: Provider, model: ProviderModel, *, validate_credentials: bool
    ) -> None:
        try:
            driver = self.drivers.get(provider.name, provider=provider)
        except ValueError as exc:
            raise ProviderUnavailableError(
                provider.name, f"driver misconfigured: {exc}", model=model.name
            ) from exc
        if driver is None:
            raise ProviderUnavailableError(provider.name, "no driver registered", model=model.name)

        try:
            offered = {info.id for info in driver.get_available_models()}
        except (DriverError, httpx.HTTPError) as exc:
            raise ProviderUnavailableError(
                provider.name, f"driver unreachable: {exc}", model=model.name
            ) from exc
        if model.name not in offered:
            raise ProviderUnavailableError(
                provider.name, f"model '{model.name}' is not offered by the driver", model=model.name
            )

        if validate_credentials:
            check = driver.validate_credentials()
            if not check.valid:
                reason = "; ".join(check.errors) or "credentials rejected"
                raise ProviderUnavailableError(
                    provider.name, f"invalid credentials: {reason}", model=model.name
                )

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
        if not target_provider:
            raise InvalidSwitchRequestError("target_provider is required")

        with self.lock.hold(str(conversation.id)):
            try:
                conversation = conversation_service.lock_conversation_row(db, conversation)
                provider, model = self._validate_target(db, target_provider, target_model)
                self._check_driver(provider, model, validate_credentials=options.validate_credentials)

                plan: ContextPreservationPlan | None = None
                if options.preserve_context:
                    plan = self.planner.plan(
                        conversation,
                        model.context_window,
                        target_provider=provider.name,
                        target_model=model.name,
                        messages=conversation_service.get_messages(db, conversation),
                    )

                previous_provider = conversation.provider_name
                previous_model = conversation.model_name
                has_history = history.get_history(db, conversation)
                switch_type = options.switch_type if has_history else SwitchType.INITIAL

                session = history.start_session(
                    db,
                    conversation,
                    switch_type,
                    options.reason,
                    provider_name=provider.name,
                    model_name=model.name,
                    previous_provider=previous_provider if has_history else None,
                    previous_model=previous_model if has_history else None,
                )

                conversation.provider_name = provider.name
                conversation.model_name = model.name

                meta = conversation.get_metadata()
                meta.switch_log.append(
                    SwitchRecord(
                        from_provider=previous_provider,
                        from_model=previous_model,
                        to_provider=provider.name,
                        to_model=model.name,
                        reason=options.reason,
                        switch_type=session.switch_type,
                        session_ordinal=session.ordinal,
                        context_strategy=plan.strategy if plan is not None else None,
                        switched_at=session.started_at,
                    )
                )
                if plan is not None:
                    meta.last_context_preservation = plan
                conversation.set_metadata(meta)

                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(conversation)

        logger.info(
            "Conversation %s: switched %s/%s -> %s/%s (type=%s reason=%s context=%s)",
            conversation.id,
            previous_provider,
            previous_model,
            provider.name,
            model.name,
            session.switch_type,
            options.reason,
            plan.strategy if plan is not None else "none",
        )
        safe_publish(
            self.publisher,
            ProviderSwitched(
                conversation_id=str(conversation.id),
                from_provider=previous_provider,
                to_provider=provider.name,
                from_model=previous_model,
                to_model=model.name,
                reason=options.reason,
                switch_type=session.switch_type,
            ),
        )
        return conversation

    def switch_with_fallback(
        self,
        db: Session,
        conversation: Conversation,
        candidates: Sequence[FallbackCandidate | tuple[str, str | None] | str],
        options: SwitchOptions | None = None,
        *,
        max_attempts: int | None = None,
    ) -> Conversation:
        """
        依次尝试候选；第一个成功的候选即为结果。

        每个候选的尝试（成功或失败）都会写入 provider_switch_attempts，同一轮 fallback 共用一个 attempt_group。
        max_attempts 限制实际尝试的候选数，超出部分不会被尝试也不会被记录。
        """
        ordered = _as_candidates(candidates)
        if not ordered:
            raise InvalidSwitchRequestError("At least one fallback candidate is required")
        if max_attempts is not None:
            if max_attempts < 1:
                raise InvalidSwitchRequestError("max_attempts must be at least 1")
            if len(ordered) > max_attempts:
                logger.info(
                    "Conversation %s: trying %d of %d fallback candidates",
                    conversation.id,
                    max_attempts,
                    len(ordered),
                )
                ordered = ordered[:max_attempts]

        base = options or SwitchOptions(reason="fallback")
        fallback_options = base.model_copy(update={"switch_type": SwitchType.FALLBACK})
        attempt_group = uuid.uuid4()
        failures: list[dict[str, str | None]] = []

        for position, candidate in enumerate(ordered, start=1):
            try:
                switched = self.switch_provider(
                    db,
                    conversation,
                    candidate.provider,
                    candidate.model,
                    fallback_options,
                )
            except ProviderUnavailableError as exc:
                logger.warning(
                    "Conversation %s: fallback candidate #%d %s/%s unavailable: %s",
                    conversation.id,
                    position,
                    candidate.provider,
                    candidate.model or "-",
                    exc.reason,
                )
                history.record_attempt(
                    db,
                    conversation,
                    attempt_group=attempt_group,
                    position=position,
                    provider_name=candidate.provider,
                    model_name=exc.model or candidate.model,
                    succeeded=False,
                    error=exc,
                )
                failures.append(
                    {"provider": candidate.provider, "model": exc.model or candidate.model, "reason": exc.reason}
                )
                continue

            history.record_attempt(
                db,
                switched,
                attempt_group=attempt_group,
                position=position,
                provider_name=switched.provider_name,
                model_name=switched.model_name,
                succeeded=True,
            )
            if failures:
                logger.info(
                    "Conversation %s: fallback succeeded on %s/%s after %d failed candidate(s)",
                    switched.id,
                    switched.provider_name,
                    switched.model_name,
                    len(failures),
                )
            return switched

        logger.error(
            "Conversation %s: all %d fallback candidates failed",
            conversation.id,
            len(ordered),
        )
        raise FallbackExhaustedError(failures)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def get_available_providers(self, db: Session, conversation: Conversation) -> list[AvailableProvider]:
        """除当前 Provider 外所有 active 且至少有一个 active 模型的 Provider。"""
        result: list[AvailableProvider] = []
        for provider in list_active_providers(db):
            if provider.name == conversation.provider_name:
                continue
            models = active_models(db, provider)
            if not models:
                continue
            result.append(
                AvailableProvider(
                    name=provider.name,
                    display_name=provider.display_name,
                    driver=provider.driver,
                    models=[
                        AvailableModel(
                            name=m.name,
                            display_name=m.display_name,
                            context_window=m.context_window,
                            is_default=bool(m.is_default),
                            capabilities=list(m.capabilities) if isinstance(m.capabilities, list) else [],
                        )
                        for m in models
                    ],
                )
            )
        return result

    # ------------------------------------------------------------------
    # Fallback strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _default_model(provider: AvailableProvider) -> AvailableModel:
        for model in provider.models:
            if model.is_default:
                return model
        return provider.models[0]

    def _auto_candidates(self, available: list[AvailableProvider]) -> list[FallbackCandidate]:
        return [FallbackCandidate(provider=p.name) for p in available]

    def _cost_optimized_candidates(
        self, db: Session, available: list[AvailableProvider]
    ) -> list[FallbackCandidate]:
        entries = self.pricing.compare_pricing(
            db,
            [(p.name, self._default_model(p).name) for p in available],
            REFERENCE_INPUT_TOKENS,
            REFERENCE_OUTPUT_TOKENS,
        )
        return [FallbackCandidate(provider=e.provider, model=e.model) for e in entries]

    def _capability_matched_candidates(
        self, db: Session, conversation: Conversation, available: list[AvailableProvider]
    ) -> list[FallbackCandidate]:
        required: set[str] = set()
        current_provider = get_provider(db, conversation.provider_name)
        if current_provider is not None:
            current = get_provider_model(db, current_provider, conversation.model_name)
            if current is not None and isinstance(current.capabilities, list):
                required = set(current.capabilities)
        if not required:
            logger.info(
                "Conversation %s: current model declares no capabilities, using auto order",
                conversation.id,
            )
            return self._auto_candidates(available)

        candidates: list[FallbackCandidate] = []
        for provider in available:
            ranked = sorted(provider.models, key=lambda m: not m.is_default)
            match = next((m for m in ranked if required.issubset(m.capabilities)), None)
            if match is None:
                continue
            candidates.append(FallbackCandidate(provider=provider.name, model=match.name))
        return candidates

    def _user_preference_candidates(
        self, conversation: Conversation, available: list[AvailableProvider]
    ) -> list[FallbackCandidate]:
        offered = {p.name: {m.name for m in p.models} for p in available}
        candidates: list[FallbackCandidate] = []
        seen: set[tuple[str, str | None]] = set()
        for preference in conversation.fallback_preferences:
            models = offered.get(preference.provider)
            if models is None:
                continue
            if preference.model is not None and preference.model not in models:
                continue
            key = (preference.provider, preference.model)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(FallbackCandidate(provider=preference.provider, model=preference.model))
        if not candidates:
            return self._auto_candidates(available)
        return candidates

    def build_fallback_candidates(
        self,
        db: Session,
        conversation: Conversation,
        strategy: FallbackStrategy | str = FallbackStrategy.AUTO,
    ) -> list[FallbackCandidate]:
        """
        按策略生成 fallback 候选列表（不包含当前 Provider）：

        - auto：其余可用 Provider 按名称排序，取各自默认模型；
        - cost_optimized：各 Provider 默认模型按参考用量的估算费用从低到高；
        - capability_matched：只保留具备当前模型全部 capabilities 的模型，优先默认模型；
        - user_preference：会话元数据 fallback_preferences 中仍可用的条目，为空时退回 auto。
        """
        try:
            strategy = FallbackStrategy(strategy)
        except ValueError as exc:
            raise InvalidSwitchRequestError(f"Unknown fallback strategy '{strategy}'") from exc

        available = self.get_available_providers(db, conversation)
        if not available:
            return []
        if strategy == FallbackStrategy.COST_OPTIMIZED:
            return self._cost_optimized_candidates(db, available)
        if strategy == FallbackStrategy.CAPABILITY_MATCHED:
            return self._capability_matched_candidates(db, conversation, available)
        if strategy == FallbackStrategy.USER_PREFERENCE:
            return self._user_preference_candidates(conversation, available)
        return self._auto_candidates(available)

    def execute_auto_fallback(
        self,
        db: Session,
        conversation: Conversation,
        error: BaseException | str,
        *,
        strategy: FallbackStrategy | str = FallbackStrategy.AUTO,
        max_attempts: int | None = None,
    ) -> Conversation:
        """当前 Provider 出错时，按策略生成候选并依次尝试，最多尝试 max_attempts 个。"""
        candidates = self.build_fallback_candidates(db, conversation, strategy)
        if not candidates:
            raise FallbackExhaustedError([])
        logger.warning(
            "Conversation %s: auto fallback (%s) from %s triggered by %s",
            conversation.id,
            FallbackStrategy(strategy).value,
            conversation.provider_name,
            error,
        )
        return self.switch_with_fallback(
            db,
            conversation,
            candidates,
            SwitchOptions(reason=clip_reason(f"auto_fallback: {error}")),
            max_attempts=max_attempts or settings.fallback_max_attempts,
        )


__all__ = ["DEFAULT_OPTIONS", "REFERENCE_INPUT_TOKENS", "REFERENCE_OUTPUT_TOKENS", "ProviderSwitchingService"]
