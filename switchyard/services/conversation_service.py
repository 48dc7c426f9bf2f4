from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from switchyard.exceptions import (
    ConversationNotFoundError,
    InvalidSwitchRequestError,
    ModelNotFoundError,
    ProviderInactiveError,
    ProviderNotFoundError,
)
from switchyard.logging_config import logger
from switchyard.models import Conversation, Message
from switchyard.models.base import utcnow
from switchyard.provider.registry import get_provider, resolve_target_model
from switchyard.schemas.context import FallbackPreference
from switchyard.schemas.switching import SwitchType

from . import provider_history_service as history
from .conversation_lock import ConversationLock, KeyedLock

MESSAGE_ROLES = ("user", "assistant", "system")


def get_conversation(db: Session, conversation_id: UUID | str) -> Conversation:
    try:
        key = conversation_id if isinstance(conversation_id, UUID) else UUID(str(conversation_id))
    except ValueError:
        raise ConversationNotFoundError(conversation_id)
    conversation = db.get(Conversation, key)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    return conversation


def lock_conversation_row(db: Session, conversation: Conversation) -> Conversation:
    """
    在当前事务内重新读取会话行并加行锁，覆盖 identity map 中可能过期的属性。

    FOR UPDATE 在不支持的方言（SQLite）上会被忽略，进程内互斥由 ConversationLock 保证。
    """
    row = (
        db.execute(
            select(Conversation)
            .where(Conversation.id == conversation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )
    if row is None:
        raise ConversationNotFoundError(conversation.id)
    return row


def _next_sequence(db: Session, conversation: Conversation) -> int:
    current = db.execute(
        select(func.max(Message.sequence)).where(Message.conversation_id == conversation.id)
    ).scalar()
    return int(current or 0) + 1


def create_conversation(
    db: Session,
    provider: str,
    model: str | None = None,
    *,
    title: str | None = None,
    system_prompt: str | None = None,
) -> Conversation:
    """
    创建会话并打开 initial session。

    未指定模型时使用 Provider 的默认模型；system_prompt 作为第 1 条消息写入。
    """
    provider_row = get_provider(db, provider)
    if provider_row is None:
        raise ProviderNotFoundError(provider)
    if not provider_row.is_active:
        raise ProviderInactiveError(provider, provider_row.status)
    model_row = resolve_target_model(db, provider_row, model)
    if model_row is None:
        raise ModelNotFoundError(provider, model)

    conversation = Conversation(
        title=title,
        provider_name=provider_row.name,
        model_name=model_row.name,
        total_cost=0.0,
        total_input_tokens=0,
        total_output_tokens=0,
        total_messages=0,
        last_activity_at=utcnow(),
    )
    try:
        db.add(conversation)
        db.flush()
        history.start_session(db, conversation, SwitchType.INITIAL, "conversation_created")
        if system_prompt:
            db.add(
                Message(
                    conversation_id=conversation.id,
                    role="system",
                    content=system_prompt,
                    sequence=1,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(conversation)
    logger.info(
        "Conversation %s created on %s/%s",
        conversation.id,
        conversation.provider_name,
        conversation.model_name,
    )
    return conversation


def append_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    *,
    token_count: int | None = None,
    lock: ConversationLock | None = None,
) -> Message:
    """在会话锁内分配下一个连续的 sequence 并写入消息；消息一旦写入不再修改内容。"""
    if role not in MESSAGE_ROLES:
        raise InvalidSwitchRequestError(
            f"Unsupported message role: {role}",
            details={"role": role, "allowed": list(MESSAGE_ROLES)},
        )

    with (lock or KeyedLock()).hold(str(conversation.id)):
        try:
            message = Message(
                conversation_id=conversation.id,
                role=role,
                content=content,
                sequence=_next_sequence(db, conversation),
                token_count=token_count,
                provider_name=conversation.provider_name if role == "assistant" else None,
                model_name=conversation.model_name if role == "assistant" else None,
            )
            db.add(message)
            conversation.last_activity_at = utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(message)
    return message


def set_fallback_preferences(
    db: Session,
    conversation: Conversation,
    preferences: Sequence[FallbackPreference | str],
    *,
    lock: ConversationLock | None = None,
) -> Conversation:
    """整体替换会话元数据中的 fallback_preferences，user_preference 策略按此顺序尝试。"""
    normalized = [FallbackPreference.model_validate(item) for item in preferences]
    with (lock or KeyedLock()).hold(str(conversation.id)):
        try:
            lock_conversation_row(db, conversation)
            meta = conversation.get_metadata()
            meta.fallback_preferences = normalized
            conversation.set_metadata(meta)
            db.commit()
        except Exception:
            db.rollback()
            raise
    logger.info(
        "Conversation %s: fallback preferences set to %s",
        conversation.id,
        [p.provider for p in normalized],
    )
    return conversation


def get_messages(db: Session, conversation: Conversation) -> list[Message]:
    return list(
        db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.sequence)
        ).scalars()
    )


__all__ = [
    "MESSAGE_ROLES",
    "append_message",
    "create_conversation",
    "get_conversation",
    "get_messages",
    "lock_conversation_row",
    "set_fallback_preferences",
]
