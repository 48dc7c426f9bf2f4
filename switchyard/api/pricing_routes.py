from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from switchyard.deps import get_db, get_switchyard_service
from switchyard.errors import conflict
from switchyard.schemas import (
    CostBreakdown,
    CostCalculationRequest,
    PricingCompareRequest,
    PricingComparisonEntry,
    PricingDescriptor,
    PricingHistoryItem,
    PricingOverrideRequest,
)
from switchyard.services.switchyard_service import SwitchyardService

router = APIRouter(prefix="/v1/pricing", tags=["pricing"])


@router.get("/resolve", response_model=PricingDescriptor)
def resolve_pricing_endpoint(
    provider: str = Query(..., min_length=1),
    model: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> PricingDescriptor:
    return service.resolve_pricing(db, provider, model)


@router.put("/overrides", response_model=PricingDescriptor)
def store_pricing_override_endpoint(
    provider: str = Query(..., min_length=1),
    model: str = Query(..., min_length=1),
    payload: PricingOverrideRequest = Body(...),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> PricingDescriptor:
    try:
        return service.store_pricing_override(db, provider, model, payload.to_payload())
    except IntegrityError:
        raise conflict(
            f"Pricing for {provider}/{model} was updated concurrently, please retry",
            details={"provider": provider, "model": model},
        )


@router.get("/history", response_model=list[PricingHistoryItem])
def pricing_history_endpoint(
    provider: str = Query(..., min_length=1),
    model: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[PricingHistoryItem]:
    return [
        PricingHistoryItem.model_validate(record)
        for record in service.get_pricing_history(db, provider, model)
    ]


@router.post("/compare", response_model=list[PricingComparisonEntry])
def compare_pricing_endpoint(
    payload: PricingCompareRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> list[PricingComparisonEntry]:
    return service.compare_pricing(db, payload.candidates, payload.input_tokens, payload.output_tokens)


@router.post("/cost", response_model=CostBreakdown)
def calculate_cost_endpoint(
    payload: CostCalculationRequest,
    db: Session = Depends(get_db),
    service: SwitchyardService = Depends(get_switchyard_service),
) -> CostBreakdown:
    return service.calculate_cost(
        db,
        payload.provider,
        payload.model,
        payload.input_tokens,
        payload.output_tokens,
        units=payload.units,
    )


__all__ = ["router"]
