"""
跨 Provider 的费用追踪。

- track_message_cost：按记账当时生效的定价计算单条消息费用，挂到当前打开的 session 上，
  同时累加 session 快照和会话运行总计，提交后发出 CostCalculated 事件；
- get_cost_analysis：按 Provider 汇总费用流水，给出切换影响、效率排名、趋势与优化建议。

这里只做核算，从不替调用方选择 Provider。
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from switchyard.exceptions import ConversationStateError
from switchyard.logging_config import logger
from switchyard.models import Conversation, CostRecord, Message, ProviderSession
from switchyard.models.base import utcnow
from switchyard.provider.driver import DriverResponse, TokenUsage
from switchyard.schemas.analysis import (
    CostAnalysis,
    CostTrendPoint,
    EfficiencyEntry,
    EfficiencyRanking,
    ProviderCostBreakdown,
    Recommendation,
    SwitchingImpact,
)
from switchyard.schemas.events import CostCalculated
from switchyard.schemas.switching import SwitchType
from switchyard.settings import settings

from . import conversation_service
from . import provider_history_service as history
from .conversation_lock import ConversationLock, KeyedLock
from .event_bus import EventPublisher, safe_publish
from .pricing_service import PricingService

PROVIDER_OPTIMIZATION_RATIO = 1.5
FALLBACK_SHARE_THRESHOLD = 0.3


def _usage_of(response: DriverResponse | TokenUsage) -> TokenUsage:
    if isinstance(response, TokenUsage):
        return response
    return response.token_usage


def _reported_model(response: DriverResponse | TokenUsage) -> str | None:
    if isinstance(response, DriverResponse):
        return response.model or None
    return None


def _per_message(cost: float, messages: int) -> float:
    return cost / messages if messages else 0.0


def _per_1k_tokens(cost: float, tokens: int) -> float:
    return cost / tokens * 1000 if tokens else 0.0


class CostTracker:
    def __init__(
        self,
        pricing: PricingService,
        *,
        lock: ConversationLock | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.pricing = pricing
        self.lock = lock or KeyedLock()
        self.publisher = publisher

    def track_message_cost(
        self,
        db: Session,
        conversation: Conversation,
        response: DriverResponse | TokenUsage,
        *,
        message: Message | None = None,
    ) -> CostRecord:
        """
        记账一次驱动调用。

        Provider 取当前打开的 session；模型优先取驱动响应里上游实际回报的模型
        （例如带日期后缀的 gpt-4o-2024-08-06），缺失时退回 session 绑定的模型。
        会话行和 session 行都在锁内重新读取，累加基于数据库中的最新值。
        """
        usage = _usage_of(response)
        precision = settings.cost_precision

        with self.lock.hold(str(conversation.id)):
            try:
                conversation = conversation_service.lock_conversation_row(db, conversation)
                session = history.get_active_session(db, conversation, for_update=True)
                if session is None:
                    raise ConversationStateError(
                        f"Conversation {conversation.id} has no open provider session; cost cannot be tracked",
                        details={"conversation_id": str(conversation.id)},
                    )
                model_name = _reported_model(response) or session.model_name

                breakdown = self.pricing.calculate_cost(
                    db,
                    session.provider_name,
                    model_name,
                    usage.input_tokens,
                    usage.output_tokens,
                )
                record = CostRecord(
                    conversation_id=conversation.id,
                    session_id=session.id,
                    message_id=message.id if message is not None else None,
                    provider_name=session.provider_name,
                    model_name=model_name,
                    input_tokens=breakdown.input_tokens,
                    output_tokens=breakdown.output_tokens,
                    input_cost=breakdown.input_cost,
                    output_cost=breakdown.output_cost,
                    total_cost=breakdown.total_cost,
                    currency=breakdown.currency,
                    pricing_source=breakdown.pricing_source.value,
                    unit=breakdown.unit.value,
                )
                db.add(record)
                db.flush()
                history.record_session_usage(db, session, record)

                conversation.total_cost = round(
                    float(conversation.total_cost or 0.0) + breakdown.total_cost, precision
                )
                conversation.total_input_tokens = int(conversation.total_input_tokens or 0) + breakdown.input_tokens
                conversation.total_output_tokens = (
                    int(conversation.total_output_tokens or 0) + breakdown.output_tokens
                )
                conversation.total_messages = int(conversation.total_messages or 0) + 1
                conversation.last_activity_at = utcnow()

                if message is not None:
                    message.cost = breakdown.total_cost
                    message.input_tokens = breakdown.input_tokens
                    message.output_tokens = breakdown.output_tokens
                    message.provider_name = session.provider_name
                    message.model_name = model_name

                db.commit()
            except ConversationStateError:
                db.rollback()
                raise
            except Exception:
                db.rollback()
                logger.exception("Conversation %s: failed to track message cost", conversation.id)
                raise
            db.refresh(record)

        logger.info(
            "Conversation %s: tracked %s %s on %s/%s (in=%d out=%d source=%s)",
            conversation.id,
            breakdown.total_cost,
            breakdown.currency,
            record.provider_name,
            record.model_name,
            breakdown.input_tokens,
            breakdown.output_tokens,
            breakdown.pricing_source.value,
        )
        safe_publish(
            self.publisher,
            CostCalculated(
                conversation_id=str(conversation.id),
                provider=record.provider_name,
                model=record.model_name,
                cost=breakdown.total_cost,
                currency=breakdown.currency,
                input_tokens=breakdown.input_tokens,
                output_tokens=breakdown.output_tokens,
            ),
        )
        return record

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _provider_sums(self, db: Session, conversation: Conversation) -> list[tuple]:
        return list(
            db.execute(
                select(
                    CostRecord.provider_name,
                    func.sum(CostRecord.total_cost),
                    func.sum(CostRecord.input_tokens),
                    func.sum(CostRecord.output_tokens),
                    func.count(CostRecord.id),
                )
                .where(CostRecord.conversation_id == conversation.id)
                .group_by(CostRecord.provider_name)
                .order_by(CostRecord.provider_name)
            ).all()
        )

    def get_cost_analysis(self, db: Session, conversation: Conversation) -> CostAnalysis:
        precision = settings.cost_precision
        sessions = history.get_history(db, conversation)
        session_counts: dict[str, int] = defaultdict(int)
        for s in sessions:
            session_counts[s.provider_name] += 1

        rows = self._provider_sums(db, conversation)
        grand_total = round(sum(float(r[1] or 0.0) for r in rows), precision)

        breakdown: list[ProviderCostBreakdown] = []
        for provider, cost, input_tokens, output_tokens, count in rows:
            cost = round(float(cost or 0.0), precision)
            input_tokens = int(input_tokens or 0)
            output_tokens = int(output_tokens or 0)
            messages = int(count or 0)
            tokens = input_tokens + output_tokens
            breakdown.append(
                ProviderCostBreakdown(
                    provider=provider,
                    total_cost=cost,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=tokens,
                    message_count=messages,
                    session_count=session_counts.get(provider, 0),
                    cost_per_message=_per_message(cost, messages),
                    cost_per_1k_tokens=_per_1k_tokens(cost, tokens),
                    percentage=round(cost / grand_total * 100, 2) if grand_total else 0.0,
                )
            )

        total_input = sum(b.input_tokens for b in breakdown)
        total_output = sum(b.output_tokens for b in breakdown)
        analysis = CostAnalysis(
            conversation_id=str(conversation.id),
            currency=self._currency_of(db, conversation),
            total_cost=grand_total,
            total_input_tokens=total_input,
            total_output_tokens=total_output,
            total_tokens=total_input + total_output,
            total_messages=sum(b.message_count for b in breakdown),
            provider_breakdown=breakdown,
            switching_impact=self._switching_impact(sessions, breakdown),
            efficiency=self._efficiency(breakdown),
            cost_trend=self._cost_trend(db, conversation),
        )
        analysis.recommendations = self._recommendations(analysis, sessions)
        return analysis

    def _currency_of(self, db: Session, conversation: Conversation) -> str:
        currency = (
            db.execute(
                select(CostRecord.currency)
                .where(CostRecord.conversation_id == conversation.id)
                .order_by(CostRecord.created_at.desc())
            )
            .scalars()
            .first()
        )
        return currency or settings.default_currency

    def _switching_impact(
        self,
        sessions: list[ProviderSession],
        breakdown: list[ProviderCostBreakdown],
    ) -> SwitchingImpact:
        switches = [s for s in sessions if s.switch_type != SwitchType.INITIAL.value]
        impact = SwitchingImpact(
            switch_count=len(switches),
            fallback_count=sum(1 for s in switches if s.switch_type == SwitchType.FALLBACK.value),
        )

        used = [b for b in breakdown if b.message_count > 0]
        if used:
            most = sorted(used, key=lambda b: (-b.cost_per_message, b.provider))[0]
            least = sorted(used, key=lambda b: (b.cost_per_message, b.provider))[0]
            impact.most_expensive_provider = most.provider
            impact.least_expensive_provider = least.provider
            impact.cost_delta = round(
                (most.cost_per_message - least.cost_per_message) * most.message_count,
                settings.cost_precision,
            )

        # 相邻两个都有消息的 session 之间比较单条消息费用：下降为有利切换，上升为不利切换。
        for previous, current in zip(sessions, sessions[1:]):
            if not previous.message_count or not current.message_count:
                continue
            before = _per_message(float(previous.total_cost or 0.0), previous.message_count)
            after = _per_message(float(current.total_cost or 0.0), current.message_count)
            if after < before:
                impact.beneficial_switches += 1
            elif after > before:
                impact.detrimental_switches += 1
        return impact

    def _efficiency(self, breakdown: list[ProviderCostBreakdown]) -> EfficiencyRanking:
        used = [b for b in breakdown if b.message_count > 0]
        ordered = sorted(used, key=lambda b: (b.cost_per_1k_tokens, b.provider))
        ranking = [
            EfficiencyEntry(
                rank=index,
                provider=b.provider,
                cost_per_1k_tokens=b.cost_per_1k_tokens,
                cost_per_message=b.cost_per_message,
            )
            for index, b in enumerate(ordered, start=1)
        ]
        return EfficiencyRanking(
            ranking=ranking,
            most_efficient=ranking[0].provider if ranking else None,
            least_efficient=ranking[-1].provider if ranking else None,
        )

    def _cost_trend(self, db: Session, conversation: Conversation) -> list[CostTrendPoint]:
        records = db.execute(
            select(CostRecord)
            .where(CostRecord.conversation_id == conversation.id)
            .order_by(CostRecord.created_at)
        ).scalars()
        days: dict[dt.date, list[float | int]] = {}
        for record in records:
            day = record.created_at.date()
            bucket = days.setdefault(day, [0.0, 0, 0])
            bucket[0] += float(record.total_cost or 0.0)
            bucket[1] += 1
            bucket[2] += int(record.input_tokens or 0) + int(record.output_tokens or 0)
        return [
            CostTrendPoint(
                date=day,
                total_cost=round(values[0], settings.cost_precision),
                message_count=int(values[1]),
                total_tokens=int(values[2]),
            )
            for day, values in sorted(days.items())
        ]

    def _recommendations(
        self,
        analysis: CostAnalysis,
        sessions: list[ProviderSession],
    ) -> list[Recommendation]:
        recommendations: list[Recommendation] = []

        used = [b for b in analysis.provider_breakdown if b.message_count > 0]
        if len(used) > 1:
            ordered = sorted(used, key=lambda b: (b.cost_per_message, b.provider))
            cheapest, priciest = ordered[0], ordered[-1]
            if priciest.cost_per_message > cheapest.cost_per_message * PROVIDER_OPTIMIZATION_RATIO:
                recommendations.append(
                    Recommendation(
                        type="provider_optimization",
                        priority="high",
                        message=(
                            f"Consider using {cheapest.provider} more frequently. It is significantly "
                            f"more cost-effective than {priciest.provider}."
                        ),
                        details={
                            "most_efficient": cheapest.provider,
                            "least_efficient": priciest.provider,
                            "potential_savings": round(
                                (priciest.cost_per_message - cheapest.cost_per_message)
                                * priciest.message_count,
                                settings.cost_precision,
                            ),
                        },
                    )
                )

        switches = [s for s in sessions if s.switch_type != SwitchType.INITIAL.value]
        fallbacks = [s for s in switches if s.switch_type == SwitchType.FALLBACK.value]
        if switches and len(fallbacks) > len(switches) * FALLBACK_SHARE_THRESHOLD:
            recommendations.append(
                Recommendation(
                    type="reliability_improvement",
                    priority="medium",
                    message="High fallback rate detected. Consider reviewing primary provider reliability.",
                    details={"fallback_rate": round(len(fallbacks) / len(switches) * 100, 2)},
                )
            )
        return recommendations


__all__ = ["CostTracker", "FALLBACK_SHARE_THRESHOLD", "PROVIDER_OPTIMIZATION_RATIO"]
