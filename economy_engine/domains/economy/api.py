from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from economy_engine.domains.auth.dependencies import (get_current_user,
                                                      require_admin,
                                                      require_service_or_admin)
from economy_engine.domains.economy.entities import WithdrawalStatus
from economy_engine.domains.economy.schemas import (BoostRequest,
                                                    CheckInResponse,
                                                    EarningEventResponse,
                                                    EarningSummaryResponse,
                                                    EconomyConfigResponse,
                                                    GrantRequest,
                                                    ProfileSyncRequest,
                                                    QuoteResponse,
                                                    WithdrawalActionRequest,
                                                    WithdrawalCreateRequest,
                                                    WithdrawalCreateResponse,
                                                    WithdrawalResponse)
from economy_engine.domains.economy.service import (EconomyService,
                                                    economy_service)
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter()


def get_economy_service() -> EconomyService:
    return economy_service


# User endpoints
@router.post("/check-in", response_model=CheckInResponse)
async def check_in(
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    """Daily check-in; drives the streak multiplier"""
    state, extended = await service.check_in(user["id"])
    return CheckInResponse(
        user_id=state.user_id, daily_streak=state.daily_streak, extended=extended
    )


@router.get("/wallet/summary", response_model=EarningSummaryResponse)
async def wallet_summary(
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    summary = await service.earning_summary(user["id"])
    return EarningSummaryResponse(**summary)


@router.get("/wallet/history", response_model=List[EarningEventResponse])
async def wallet_history(
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    events = await service.earning_history(user["id"], limit)
    return [EarningEventResponse.from_row(event) for event in events]


@router.get("/withdrawals/quote", response_model=QuoteResponse)
async def withdrawal_quote(
    points: int = Query(...),
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    """Estimate shown before a withdrawal; same rounding as the frozen amount"""
    quote = await service.quote(user["id"], points)
    return QuoteResponse(
        points=quote.points,
        country=quote.country,
        country_multiplier=quote.country_multiplier,
        global_margin=quote.global_margin,
        points_per_dollar=quote.points_per_dollar,
        amount_usd=quote.amount_usd,
        usd_per_1000_points=quote.usd_per_1000_points,
    )


@router.post("/withdrawals", response_model=WithdrawalCreateResponse, status_code=201)
async def create_withdrawal(
    request: WithdrawalCreateRequest,
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    row = await service.create_withdrawal(
        user["id"], request.amount, request.method, request.method_fields()
    )
    return WithdrawalCreateResponse(withdrawal_id=row.id)


@router.get("/withdrawals", response_model=List[WithdrawalResponse])
async def my_withdrawals(
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
    service: EconomyService = Depends(get_economy_service),
):
    rows = await service.list_user_withdrawals(user["id"], limit)
    return [WithdrawalResponse.from_row(row) for row in rows]


# Service endpoints
@router.post("/rewards/grant", response_model=EarningEventResponse, status_code=201)
async def grant_reward(
    request: GrantRequest,
    caller=Depends(require_service_or_admin),
    service: EconomyService = Depends(get_economy_service),
):
    """Action-completion hook for the activity modules"""
    event = await service.grant(request.user_id, request.action_type)
    return EarningEventResponse.from_row(event)


@router.put("/profiles/{user_id}")
async def sync_profile(
    user_id: str,
    request: ProfileSyncRequest,
    caller=Depends(require_service_or_admin),
    service: EconomyService = Depends(get_economy_service),
):
    state = await service.sync_profile(user_id, request.model_dump())
    return {"success": True, "userId": state.user_id, "country": state.country}


# Admin endpoints
@router.get("/admin/config", response_model=EconomyConfigResponse)
async def read_config(
    admin=Depends(require_admin),
    service: EconomyService = Depends(get_economy_service),
):
    row, config = await service.get_config()
    return EconomyConfigResponse(
        version=row.version,
        created_by=row.created_by,
        created_at=row.created_at,
        config=config.to_dict(),
    )


@router.put("/admin/config", response_model=EconomyConfigResponse)
async def write_config(
    document: Dict[str, Any] = Body(...),
    admin=Depends(require_admin),
    service: EconomyService = Depends(get_economy_service),
):
    row, config = await service.update_config(document, admin["id"])
    return EconomyConfigResponse(
        version=row.version,
        created_by=row.created_by,
        created_at=row.created_at,
        config=config.to_dict(),
    )


@router.post("/admin/boosts")
async def grant_boost(
    request: BoostRequest,
    admin=Depends(require_admin),
    service: EconomyService = Depends(get_economy_service),
):
    state = await service.grant_boost(request.user_id, request.factor, request.expires_at)
    return {
        "success": True,
        "userId": state.user_id,
        "factor": state.boost_factor,
        "expiresAt": state.boost_expires_at,
    }


@router.get("/admin/withdrawals", response_model=List[WithdrawalResponse])
async def review_queue(
    status: Optional[WithdrawalStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin=Depends(require_admin),
    service: EconomyService = Depends(get_economy_service),
):
    rows = await service.list_withdrawals(status.value if status else None, limit)
    return [WithdrawalResponse.from_row(row) for row in rows]


@router.post("/admin/withdrawals/{withdrawal_id}/action", response_model=WithdrawalResponse)
async def withdrawal_action(
    withdrawal_id: str,
    request: WithdrawalActionRequest,
    admin=Depends(require_admin),
    service: EconomyService = Depends(get_economy_service),
):
    row = await service.process_withdrawal_action(
        withdrawal_id,
        request.action,
        admin["id"],
        rejection_reason=request.rejection_reason,
        admin_note=request.admin_note,
    )
    return WithdrawalResponse.from_row(row)
