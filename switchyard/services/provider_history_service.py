"""
Provider 使用历史。

每个会话的 Provider 使用记录是一串首尾相接的 session：
- start_session 是唯一修改 session 边界的入口：先关闭当前打开的 session，再以下一个序号打开新 session；
- 同一时刻最多只有一个打开的 session（数据库部分唯一索引兜底）；
- session 上的消息数 / token / 费用快照只由费用追踪在记账时更新。

这里的函数都不提交事务（record_attempt 除外），由调用方在自己的事务中统一提交或回滚。
"""

from __future__ import annotations

import datetime as dt
from collections import Counter, defaultdict
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from switchyard.exceptions import ConversationStateError
from switchyard.logging_config import logger
from switchyard.models import Conversation, CostRecord, ProviderSession, ProviderSwitchAttempt
from switchyard.models.base import utcnow
from switchyard.schemas.analysis import (
    BreakdownEntry,
    FallbackAnalysis,
    FallbackTransition,
    HistoryFilters,
    ProviderStatistics,
)
from switchyard.schemas.switching import SwitchType
from switchyard.settings import settings


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite 读回的时间不带时区，统一按 UTC 处理。
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def get_active_session(
    db: Session, conversation: Conversation, *, for_update: bool = False
) -> ProviderSession | None:
    stmt = (
        select(ProviderSession)
        .where(ProviderSession.conversation_id == conversation.id)
        .where(ProviderSession.ended_at.is_(None))
        .order_by(ProviderSession.ordinal.desc())
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalars().first()


def _next_ordinal(db: Session, conversation_id: UUID) -> int:
    current = db.execute(
        select(func.max(ProviderSession.ordinal)).where(
            ProviderSession.conversation_id == conversation_id
        )
    ).scalar()
    return int(current or 0) + 1


def end_active_session(
    db: Session,
    conversation: Conversation,
    *,
    ended_at: dt.datetime | None = None,
) -> ProviderSession | None:
    session = get_active_session(db, conversation)
    if session is None:
        return None
    session.ended_at = ended_at or utcnow()
    db.flush()
    return session


def start_session(
    db: Session,
    conversation: Conversation,
    switch_type: SwitchType | str,
    reason: str | None = None,
    *,
    provider_name: str | None = None,
    model_name: str | None = None,
    previous_provider: str | None = None,
    previous_model: str | None = None,
) -> ProviderSession:
    """
    关闭当前打开的 session 并开启新 session。

    provider_name / model_name 默认取会话当前绑定；新旧 session 使用同一个时间点衔接，保证不重叠。
    """
    kind = switch_type.value if isinstance(switch_type, SwitchType) else str(switch_type)
    if kind not in {t.value for t in SwitchType}:
        raise ValueError(f"Unknown switch_type: {kind}")

    now = utcnow()
    end_active_session(db, conversation, ended_at=now)

    session = ProviderSession(
        conversation_id=conversation.id,
        ordinal=_next_ordinal(db, conversation.id),
        provider_name=provider_name or conversation.provider_name,
        model_name=model_name or conversation.model_name,
        switch_type=kind,
        switch_reason=reason,
        previous_provider_name=previous_provider,
        previous_model_name=previous_model,
        started_at=now,
        message_count=0,
        total_input_tokens=0,
        total_output_tokens=0,
        total_cost=0.0,
    )
    db.add(session)
    db.flush()
    logger.info(
        "Conversation %s: session #%d started on %s/%s (type=%s, previous=%s/%s)",
        conversation.id,
        session.ordinal,
        session.provider_name,
        session.model_name,
        kind,
        previous_provider,
        previous_model,
    )
    return session


def record_session_usage(db: Session, session: ProviderSession, cost_record: CostRecord) -> ProviderSession:
    if session.ended_at is not None:
        raise ConversationStateError(
            f"Session {session.id} is closed; usage cannot be recorded",
            details={"session_id": str(session.id)},
        )
    session.message_count = int(session.message_count or 0) + 1
    session.total_input_tokens = int(session.total_input_tokens or 0) + int(cost_record.input_tokens or 0)
    session.total_output_tokens = int(session.total_output_tokens or 0) + int(cost_record.output_tokens or 0)
    session.total_cost = round(
        float(session.total_cost or 0.0) + float(cost_record.total_cost or 0.0),
        settings.cost_precision,
    )
    db.flush()
    return session


def get_history(db: Session, conversation: Conversation) -> list[ProviderSession]:
    return list(
        db.execute(
            select(ProviderSession)
            .where(ProviderSession.conversation_id == conversation.id)
            .order_by(ProviderSession.ordinal)
        ).scalars()
    )


def record_attempt(
    db: Session,
    conversation: Conversation,
    *,
    attempt_group: UUID,
    position: int,
    provider_name: str,
    model_name: str | None,
    succeeded: bool,
    error: BaseException | None = None,
    commit: bool = True,
) -> ProviderSwitchAttempt:
    attempt = ProviderSwitchAttempt(
        conversation_id=conversation.id,
        attempt_group=attempt_group,
        position=position,
        provider_name=provider_name,
        model_name=model_name,
        succeeded=succeeded,
        error_type=type(error).__name__ if error is not None else None,
        error_message=str(error) if error is not None else None,
    )
    db.add(attempt)
    if commit:
        db.commit()
        db.refresh(attempt)
    else:
        db.flush()
    return attempt


def get_switch_attempts(
    db: Session,
    conversation: Conversation,
    *,
    attempt_group: UUID | None = None,
) -> list[ProviderSwitchAttempt]:
    stmt = select(ProviderSwitchAttempt).where(ProviderSwitchAttempt.conversation_id == conversation.id)
    if attempt_group is not None:
        stmt = stmt.where(ProviderSwitchAttempt.attempt_group == attempt_group)
    stmt = stmt.order_by(ProviderSwitchAttempt.created_at, ProviderSwitchAttempt.position)
    return list(db.execute(stmt).scalars())


def _filtered_sessions(db: Session, filters: HistoryFilters | None) -> list[ProviderSession]:
    stmt = select(ProviderSession)
    if filters is not None:
        if filters.provider:
            stmt = stmt.where(ProviderSession.provider_name == filters.provider)
        if filters.switch_type:
            stmt = stmt.where(ProviderSession.switch_type == filters.switch_type)
        if filters.start_date is not None:
            stmt = stmt.where(ProviderSession.started_at >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(ProviderSession.started_at <= filters.end_date)
        if filters.conversation_id is not None:
            stmt = stmt.where(ProviderSession.conversation_id == filters.conversation_id)
    stmt = stmt.order_by(ProviderSession.started_at, ProviderSession.ordinal)
    return list(db.execute(stmt).scalars())


def _breakdown(
    sessions: Iterable[ProviderSession],
    key_of,
    total: int,
) -> list[BreakdownEntry]:
    counts: Counter[str] = Counter()
    costs: dict[str, float] = defaultdict(float)
    messages: dict[str, int] = defaultdict(int)
    for session in sessions:
        key = key_of(session)
        counts[key] += 1
        costs[key] += float(session.total_cost or 0.0)
        messages[key] += int(session.message_count or 0)

    entries = [
        BreakdownEntry(
            key=key,
            count=count,
            percentage=round(count / total * 100, 2) if total else 0.0,
            total_cost=round(costs[key], settings.cost_precision),
            message_count=messages[key],
        )
        for key, count in counts.items()
    ]
    entries.sort(key=lambda e: (-e.count, e.key))
    return entries


def get_statistics(db: Session, filters: HistoryFilters | None = None) -> ProviderStatistics:
    sessions = _filtered_sessions(db, filters)
    total = len(sessions)

    durations = [
        (_as_utc(s.ended_at) - _as_utc(s.started_at)).total_seconds()
        for s in sessions
        if s.ended_at is not None and s.started_at is not None
    ]
    return ProviderStatistics(
        total_sessions=total,
        total_messages=sum(int(s.message_count or 0) for s in sessions),
        total_cost=round(sum(float(s.total_cost or 0.0) for s in sessions), settings.cost_precision),
        total_input_tokens=sum(int(s.total_input_tokens or 0) for s in sessions),
        total_output_tokens=sum(int(s.total_output_tokens or 0) for s in sessions),
        average_session_duration_seconds=(sum(durations) / len(durations)) if durations else None,
        provider_breakdown=_breakdown(sessions, lambda s: s.provider_name, total),
        switch_type_breakdown=_breakdown(sessions, lambda s: s.switch_type, total),
    )


def _most_common(counter: Counter[str]) -> str | None:
    if not counter:
        return None
    return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[0][0]


def get_fallback_analysis(db: Session, filters: HistoryFilters | None = None) -> FallbackAnalysis:
    # switch_type 过滤对 fallback 分析没有意义，这里忽略。
    base_filters = filters.model_copy(update={"switch_type": None}) if filters is not None else None
    sessions = _filtered_sessions(db, base_filters)
    fallbacks = [s for s in sessions if s.switch_type == SwitchType.FALLBACK.value]

    sources: Counter[str] = Counter(
        s.previous_provider_name for s in fallbacks if s.previous_provider_name
    )
    targets: Counter[str] = Counter(s.provider_name for s in fallbacks)
    pairs: Counter[tuple[str, str]] = Counter(
        (s.previous_provider_name or "", s.provider_name) for s in fallbacks
    )
    transitions = [
        FallbackTransition(from_provider=src or None, to_provider=dst, count=count)
        for (src, dst), count in sorted(pairs.items(), key=lambda item: (-item[1], item[0]))
    ]

    attempt_stmt = select(func.count(ProviderSwitchAttempt.id)).where(
        ProviderSwitchAttempt.succeeded.is_(False)
    )
    if filters is not None:
        if filters.provider:
            attempt_stmt = attempt_stmt.where(ProviderSwitchAttempt.provider_name == filters.provider)
        if filters.start_date is not None:
            attempt_stmt = attempt_stmt.where(ProviderSwitchAttempt.created_at >= filters.start_date)
        if filters.end_date is not None:
            attempt_stmt = attempt_stmt.where(ProviderSwitchAttempt.created_at <= filters.end_date)
        if filters.conversation_id is not None:
            attempt_stmt = attempt_stmt.where(
                ProviderSwitchAttempt.conversation_id == filters.conversation_id
            )
    failed_attempts = int(db.execute(attempt_stmt).scalar() or 0)

    total = len(sessions)
    return FallbackAnalysis(
        total_fallbacks=len(fallbacks),
        total_sessions=total,
        fallback_rate=(len(fallbacks) / total) if total else 0.0,
        most_common_fallback_source=_most_common(sources),
        most_common_fallback_target=_most_common(targets),
        transitions=transitions,
        failed_attempts=failed_attempts,
    )


__all__ = [
    "end_active_session",
    "get_active_session",
    "get_fallback_analysis",
    "get_history",
    "get_statistics",
    "get_switch_attempts",
    "record_attempt",
    "record_session_usage",
    "start_session",
]
