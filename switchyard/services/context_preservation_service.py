"""
上下文保留规划。

切换到上下文窗口不同的 Provider 时，决定哪些历史消息需要重放给新的 Provider：

1. 预算 = floor(目标上下文窗口 × 安全系数)，默认 0.9；
2. 系统消息（当前 system prompt）最先入选；
3. 其余消息从最新往最旧累加，遇到第一条放不下的消息即停止，保证保留的是连续的最新后缀；
4. 全部放得下为 full_carry，否则为 truncate_oldest；配置了摘要策略时，被丢弃的消息可以压缩为
   一段摘要，摘要放不进剩余预算则直接丢弃。

规划只产出方案，不修改任何已存储的消息。
"""

from __future__ import annotations

import math
from typing import Protocol, Sequence

from switchyard.logging_config import logger
from switchyard.models import Conversation, Message
from switchyard.schemas.context import FULL_CARRY, TRUNCATE_OLDEST, ContextPreservationPlan
from switchyard.settings import settings


class Summarizer(Protocol):
    """可插拔的摘要策略：把被丢弃的消息压缩成一段文本，返回 None 表示放弃。"""

    name: str

    def summarize(self, messages: Sequence[Message]) -> str | None: ...


def estimate_text_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / 4)


def estimate_tokens(message: Message) -> int:
    """优先使用驱动给出的 token 数；缺失时按每 4 个字符 1 个 token 粗略估算。"""
    if message.token_count is not None:
        return max(0, int(message.token_count))
    return estimate_text_tokens(message.content)


class ContextPreservationPlanner:
    def __init__(
        self,
        *,
        safety_margin: float | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        margin = settings.context_safety_margin if safety_margin is None else safety_margin
        if not 0 < margin <= 1:
            raise ValueError(f"safety_margin must be in (0, 1], got {margin}")
        self.safety_margin = margin
        self.summarizer = summarizer

    def plan(
        self,
        conversation: Conversation,
        target_context_window: int,
        *,
        target_provider: str,
        target_model: str,
        messages: Sequence[Message] | None = None,
    ) -> ContextPreservationPlan:
        history = sorted(
            messages if messages is not None else conversation.messages,
            key=lambda m: m.sequence,
        )
        window = max(0, int(target_context_window))
        budget = math.floor(window * self.safety_margin)

        system_messages = [m for m in history if m.role == "system"]
        dialogue = [m for m in history if m.role != "system"]
        system_tokens = sum(estimate_tokens(m) for m in system_messages)

        kept: list[Message] = []
        used = system_tokens
        exceeds = system_tokens > budget
        if exceeds:
            logger.warning(
                "Conversation %s: system prompt (%d tokens) exceeds context budget %d for %s/%s; "
                "no history will be carried",
                conversation.id,
                system_tokens,
                budget,
                target_provider,
                target_model,
            )
        else:
            for message in reversed(dialogue):
                cost = estimate_tokens(message)
                if used + cost > budget:
                    break
                kept.append(message)
                used += cost
            kept.reverse()

        dropped = dialogue[: len(dialogue) - len(kept)]
        strategy = FULL_CARRY if not dropped else TRUNCATE_OLDEST

        summary: str | None = None
        summary_tokens = 0
        summarizer = self.summarizer
        if dropped and summarizer is not None and not exceeds:
            summary, summary_tokens = self._summarize(summarizer, conversation, dropped, budget - used)
            if summary is not None:
                strategy = summarizer.name
                used += summary_tokens

        preserved = sorted(system_messages + kept, key=lambda m: m.sequence)
        plan = ContextPreservationPlan(
            target_provider=target_provider,
            target_model=target_model,
            context_window=window,
            budget_tokens=budget,
            safety_margin=self.safety_margin,
            strategy=strategy,
            original_message_count=len(history),
            preserved_message_count=len(preserved),
            dropped_message_count=len(dropped),
            preserved_sequences=[m.sequence for m in preserved],
            system_tokens=system_tokens,
            preserved_tokens=used,
            system_prompt_exceeds_budget=exceeds,
            summary=summary,
            summary_tokens=summary_tokens,
        )
        logger.debug(
            "Conversation %s: context plan for %s/%s strategy=%s preserved=%d dropped=%d tokens=%d/%d",
            conversation.id,
            target_provider,
            target_model,
            strategy,
            plan.preserved_message_count,
            plan.dropped_message_count,
            used,
            budget,
        )
        return plan

    def _summarize(
        self,
        summarizer: Summarizer,
        conversation: Conversation,
        dropped: Sequence[Message],
        remaining_budget: int,
    ) -> tuple[str | None, int]:
        try:
            summary = summarizer.summarize(dropped)
        except Exception:
            logger.warning(
                "Conversation %s: summarizer %s failed, falling back to truncation",
                conversation.id,
                summarizer.name,
                exc_info=True,
            )
            return None, 0
        if not summary:
            return None, 0

        tokens = estimate_text_tokens(summary)
        if tokens > remaining_budget:
            logger.info(
                "Conversation %s: discarding %d-token summary, only %d tokens left in budget",
                conversation.id,
                tokens,
                remaining_budget,
            )
            return None, 0
        return summary, tokens

    def build_context(
        self,
        conversation: Conversation,
        plan: ContextPreservationPlan,
        *,
        messages: Sequence[Message] | None = None,
    ) -> list[Message]:
        """按方案返回需要重放给新 Provider 的消息，按 sequence 排序。"""
        wanted = set(plan.preserved_sequences)
        history = messages if messages is not None else conversation.messages
        return sorted((m for m in history if m.sequence in wanted), key=lambda m: m.sequence)

    def build_driver_context(
        self,
        conversation: Conversation,
        plan: ContextPreservationPlan,
        *,
        messages: Sequence[Message] | None = None,
    ) -> list[dict[str, str]]:
        """把方案展开成驱动可直接发送的 role/content 列表；摘要作为系统消息插在历史之前。"""
        selected = self.build_context(conversation, plan, messages=messages)
        system_part = [{"role": m.role, "content": m.content} for m in selected if m.role == "system"]
        dialogue_part = [{"role": m.role, "content": m.content} for m in selected if m.role != "system"]
        if plan.summary:
            system_part.append(
                {"role": "system", "content": f"Summary of earlier conversation: {plan.summary}"}
            )
        return system_part + dialogue_part


__all__ = [
    "ContextPreservationPlanner",
    "Summarizer",
    "estimate_text_tokens",
    "estimate_tokens",
]
