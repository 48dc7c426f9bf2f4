from __future__ import annotations

import datetime as dt
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from switchyard.deps import get_db, get_switchyard_service
from switchyard.errors import not_found
from switchyard.models import Message
from switchyard.schemas import (
    AutoFallbackRequest,
    AvailableProvider,
    ConversationCreateRequest,
    ConversationResponse,
    CostAnalysis,
    CostRecordResponse,
    FallbackAnalysis,
    FallbackPreferencesRequest,
    FallbackRequest,
    HistoryFilters,
    MessageCreateRequest,
    MessageResponse,
    ProviderSessionResponse,
    ProviderStatistics,
    SwitchAttemptResponse,
    SwitchRequest,
    TrackCostRequest,
)
from switchyard.provider.driver import TokenUsage
from switchyard.services.switchyard_service import SwitchyardService

router = APIRouter(prefix="/v1", tags=["conversations"])


@router.post(
    "/conversations",
    response_model=ConversationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_conversation_endpoint(
    payload: ConversationCreateRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    conversation = service.create_conversation(
        db,
        payload.provider,
        payload.model,
        title=payload.title,
        system_prompt=payload.system_prompt,
    )
    return ConversationResponse.model_validate(conversation)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
def get_conversation_endpoint(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    return ConversationResponse.model_validate(service.get_conversation(db, conversation_id))


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def append_message_endpoint(
    conversation_id: UUID,
    payload: MessageCreateRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> MessageResponse:
    conversation = service.get_conversation(db, conversation_id)
    message = service.append_message(
        db, conversation, payload.role, payload.content, token_count=payload.token_count
    )
    return MessageResponse.model_validate(message)


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageResponse])
def list_messages_endpoint(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[MessageResponse]:
    conversation = service.get_conversation(db, conversation_id)
    return [MessageResponse.model_validate(m) for m in service.get_messages(db, conversation)]


@router.post("/conversations/{conversation_id}/switch", response_model=ConversationResponse)
def switch_provider_endpoint(
    conversation_id: UUID,
    payload: SwitchRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    conversation = service.get_conversation(db, conversation_id)
    switched = service.switch_provider(
        db, conversation, payload.provider, payload.model, payload.to_options()
    )
    return ConversationResponse.model_validate(switched)


@router.post("/conversations/{conversation_id}/fallback", response_model=ConversationResponse)
def switch_with_fallback_endpoint(
    conversation_id: UUID,
    payload: FallbackRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    conversation = service.get_conversation(db, conversation_id)
    switched = service.switch_with_fallback(
        db,
        conversation,
        payload.candidates,
        payload.to_options(),
        max_attempts=payload.max_attempts,
    )
    return ConversationResponse.model_validate(switched)


@router.post("/conversations/{conversation_id}/auto-fallback", response_model=ConversationResponse)
def auto_fallback_endpoint(
    conversation_id: UUID,
    payload: AutoFallbackRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    conversation = service.get_conversation(db, conversation_id)
    switched = service.execute_auto_fallback(
        db,
        conversation,
        payload.error,
        strategy=payload.strategy,
        max_attempts=payload.max_attempts,
    )
    return ConversationResponse.model_validate(switched)


@router.put("/conversations/{conversation_id}/fallback-preferences", response_model=ConversationResponse)
def fallback_preferences_endpoint(
    conversation_id: UUID,
    payload: FallbackPreferencesRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ConversationResponse:
    conversation = service.get_conversation(db, conversation_id)
    updated = service.set_fallback_preferences(db, conversation, payload.preferences)
    return ConversationResponse.model_validate(updated)


@router.get(
    "/conversations/{conversation_id}/available-providers",
    response_model=list[AvailableProvider],
)
def available_providers_endpoint(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[AvailableProvider]:
    conversation = service.get_conversation(db, conversation_id)
    return service.get_available_providers(db, conversation)


@router.get(
    "/conversations/{conversation_id}/history",
    response_model=list[ProviderSessionResponse],
)
def provider_history_endpoint(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[ProviderSessionResponse]:
    conversation = service.get_conversation(db, conversation_id)
    return [ProviderSessionResponse.model_validate(s) for s in service.get_history(db, conversation)]


@router.get(
    "/conversations/{conversation_id}/attempts",
    response_model=list[SwitchAttemptResponse],
)
def switch_attempts_endpoint(
    conversation_id: UUID,
    attempt_group: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[SwitchAttemptResponse]:
    conversation = service.get_conversation(db, conversation_id)
    attempts = service.get_switch_attempts(db, conversation, attempt_group=attempt_group)
    return [SwitchAttemptResponse.model_validate(a) for a in attempts]


@router.post(
    "/conversations/{conversation_id}/costs",
    response_model=CostRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
def track_cost_endpoint(
    conversation_id: UUID,
    payload: TrackCostRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> CostRecordResponse:
    conversation = service.get_conversation(db, conversation_id)
    message: Message | None = None
    if payload.message_id is not None:
        message = db.get(Message, payload.message_id)
        if message is None or message.conversation_id != conversation.id:
            raise not_found(
                f"Message {payload.message_id} not found in conversation {conversation_id}",
                details={"message_id": str(payload.message_id)},
            )
    usage = TokenUsage(input_tokens=payload.input_tokens, output_tokens=payload.output_tokens)
    record = service.track_message_cost(db, conversation, usage, message=message)
    return CostRecordResponse.model_validate(record)


@router.get("/conversations/{conversation_id}/costs", response_model=CostAnalysis)
def cost_analysis_endpoint(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> CostAnalysis:
    conversation = service.get_conversation(db, conversation_id)
    return service.get_cost_analysis(db, conversation)


def _history_filters(
    provider: str | None = Query(default=None),
    switch_type: str | None = Query(default=None),
    start_date: dt.datetime | None = Query(default=None),
    end_date: dt.datetime | None = Query(default=None),
    conversation_id: UUID | None = Query(default=None),
) -> HistoryFilters:
    return HistoryFilters(
        provider=provider,
        switch_type=switch_type,
        start_date=start_date,
        end_date=end_date,
        conversation_id=conversation_id,
    )


@router.get("/providers/statistics", response_model=ProviderStatistics)
def provider_statistics_endpoint(
    filters: HistoryFilters = Depends(_history_filters),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> ProviderStatistics:
    return service.get_provider_statistics(db, filters)


@router.get("/providers/fallback-analysis", response_model=FallbackAnalysis)
def fallback_analysis_endpoint(
    filters: HistoryFilters = Depends(_history_filters),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> FallbackAnalysis:
    return service.get_fallback_analysis(db, filters)


__all__ = ["router"]
