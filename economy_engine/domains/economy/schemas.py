from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import (BaseModel, ConfigDict, Field, NonNegativeFloat,
                      NonNegativeInt, PositiveInt, ValidationError,
                      field_validator, model_validator)
from pydantic.alias_generators import to_camel

from economy_engine.domains.economy.entities import (ACTION_SOURCES,
                                                     EconomyConfig,
                                                     HappyHourWindow,
                                                     StreakTier, UserTier,
                                                     WithdrawalTier)
from economy_engine.domains.economy.errors import InvalidConfig


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Economy config document
# ---------------------------------------------------------------------------


class StreakTierPayload(CamelModel):
    min_days: NonNegativeInt
    multiplier: NonNegativeFloat
    label: str = ""


class HappyHourPayload(CamelModel):
    name: str
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)
    multiplier: NonNegativeFloat

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.start_hour >= self.end_hour:
            raise ValueError("startHour must be before endHour")
        return self


class WithdrawalTierPayload(BaseModel):
    min_withdrawal_usd: NonNegativeFloat = Field(alias="minWithdrawalUSD")
    daily_limit_usd: NonNegativeFloat = Field(alias="dailyLimitUSD")
    weekly_limit: NonNegativeInt = Field(alias="weeklyLimit")

    model_config = ConfigDict(populate_by_name=True)


class EconomyConfigPayload(CamelModel):
    """Field-by-field validation of an admin config write."""

    earning_rates: Dict[str, NonNegativeFloat]
    daily_limits: Dict[str, NonNegativeInt]
    global_margin: float = Field(ge=0.1, le=2.0)
    points_per_dollar: PositiveInt
    country_multipliers: Dict[str, NonNegativeFloat]
    max_multiplier: float = Field(default=5.0, ge=1.0)
    streak_tiers: List[StreakTierPayload] = Field(default_factory=list)
    happy_hours: List[HappyHourPayload] = Field(default_factory=list)
    weekend_multiplier: NonNegativeFloat = 1.0
    referral_multiplier: NonNegativeFloat = 1.0
    minimum_withdrawal_points: PositiveInt = 1000
    withdrawal_tiers: Dict[UserTier, WithdrawalTierPayload] = Field(default_factory=dict)

    @field_validator("earning_rates", "daily_limits")
    @classmethod
    def _known_action_types(cls, value: Dict[str, Any]):
        unknown = sorted(set(value) - set(ACTION_SOURCES))
        if unknown:
            raise ValueError(f"unknown action types: {', '.join(unknown)}")
        return value

    @field_validator("country_multipliers")
    @classmethod
    def _upper_country_codes(cls, value: Dict[str, float]):
        return {code.strip().upper(): factor for code, factor in value.items()}

    @field_validator("streak_tiers")
    @classmethod
    def _unique_streak_thresholds(cls, value: List[StreakTierPayload]):
        thresholds = [tier.min_days for tier in value]
        if len(thresholds) != len(set(thresholds)):
            raise ValueError("streak tiers must have distinct minDays")
        return value

    @classmethod
    def parse(cls, raw: Dict[str, Any]) -> "EconomyConfigPayload":
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            errors = [
                {
                    "field": ".".join(str(part) for part in err["loc"]),
                    "message": err["msg"],
                }
                for err in e.errors()
            ]
            raise InvalidConfig("Economy config failed validation", {"errors": errors})

    def to_config(self, version: Optional[int] = None) -> EconomyConfig:
        return EconomyConfig(
            earning_rates=self.earning_rates,
            daily_limits=self.daily_limits,
            global_margin=self.global_margin,
            points_per_dollar=self.points_per_dollar,
            country_multipliers=self.country_multipliers,
            max_multiplier=self.max_multiplier,
            streak_tiers=tuple(
                StreakTier(t.min_days, t.multiplier, t.label) for t in self.streak_tiers
            ),
            happy_hours=tuple(
                HappyHourWindow(w.name, w.start_hour, w.end_hour, w.multiplier)
                for w in self.happy_hours
            ),
            weekend_multiplier=self.weekend_multiplier,
            referral_multiplier=self.referral_multiplier,
            minimum_withdrawal_points=self.minimum_withdrawal_points,
            withdrawal_tiers={
                tier: WithdrawalTier(
                    min_withdrawal_usd=Decimal(str(limits.min_withdrawal_usd)),
                    daily_limit_usd=Decimal(str(limits.daily_limit_usd)),
                    weekly_limit=limits.weekly_limit,
                )
                for tier, limits in self.withdrawal_tiers.items()
            },
            version=version,
        )


class EconomyConfigResponse(BaseModel):
    version: int
    created_by: Optional[str] = Field(default=None, serialization_alias="createdBy")
    created_at: datetime = Field(serialization_alias="createdAt")
    config: Dict[str, Any]


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


class GrantRequest(CamelModel):
    user_id: str = Field(min_length=1)
    action_type: str = Field(min_length=1)


class AppliedMultiplierResponse(BaseModel):
    name: str
    factor: float
    source: str


class EarningEventResponse(CamelModel):
    id: str
    user_id: str
    action_type: str
    source: str
    base_points: float
    multipliers: List[AppliedMultiplierResponse]
    multiplier: float
    capped: bool
    final_points: int
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "EarningEventResponse":
        return cls(
            id=row.id,
            user_id=row.user_id,
            action_type=row.action_type,
            source=row.source,
            base_points=row.base_points,
            multipliers=row.multipliers or [],
            multiplier=row.multiplier,
            capped=row.capped,
            final_points=row.final_points,
            created_at=row.created_at,
        )


class CheckInResponse(CamelModel):
    user_id: str
    daily_streak: int
    extended: bool


class BoostRequest(CamelModel):
    user_id: str = Field(min_length=1)
    factor: float = Field(gt=1.0)
    expires_at: Optional[datetime] = None


class ProfileSyncRequest(CamelModel):
    country: Optional[str] = Field(default=None, min_length=2, max_length=8)
    email_verified: bool = False
    phone_verified: bool = False
    device_id: Optional[str] = None
    ip_address: Optional[str] = None
    account_created_at: Optional[datetime] = None


class EarningSummaryResponse(CamelModel):
    user_id: str
    balance: int
    reserved: int
    total_earned: int
    by_source: Dict[str, int]
    daily_streak: int


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


class WithdrawalCreateRequest(BaseModel):
    """``amount`` and ``method`` plus the method's own fields, flat."""

    model_config = ConfigDict(extra="allow")

    amount: int
    method: str

    def method_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class WithdrawalCreateResponse(CamelModel):
    success: bool = True
    withdrawal_id: str


class QuoteResponse(BaseModel):
    points: int
    country: Optional[str]
    country_multiplier: float = Field(serialization_alias="countryMultiplier")
    global_margin: float = Field(serialization_alias="globalMargin")
    points_per_dollar: int = Field(serialization_alias="pointsPerDollar")
    amount_usd: Decimal = Field(serialization_alias="amountUSD")
    usd_per_1000_points: Decimal = Field(serialization_alias="usdPer1000Points")


class WithdrawalResponse(BaseModel):
    id: str
    user_id: str = Field(serialization_alias="userId")
    amount_points: int = Field(serialization_alias="amountPoints")
    amount_usd: Decimal = Field(serialization_alias="amountUSD")
    method: Dict[str, Any]
    status: str
    risk_score: int = Field(serialization_alias="riskScore")
    fraud_signals: List[str] = Field(serialization_alias="fraudSignals")
    review_priority: str = Field(serialization_alias="reviewPriority")
    admin_note: Optional[str] = Field(default=None, serialization_alias="adminNote")
    processed_by: Optional[str] = Field(default=None, serialization_alias="processedBy")
    processed_at: Optional[datetime] = Field(default=None, serialization_alias="processedAt")
    rejection_reason: Optional[str] = Field(
        default=None, serialization_alias="rejectionReason"
    )
    payout_reference: Optional[str] = Field(
        default=None, serialization_alias="payoutReference"
    )
    created_at: datetime = Field(serialization_alias="createdAt")

    @classmethod
    def from_row(cls, row) -> "WithdrawalResponse":
        return cls(
            id=row.id,
            user_id=row.user_id,
            amount_points=row.amount_points,
            amount_usd=row.amount_usd,
            method=row.method_details,
            status=row.status,
            risk_score=row.risk_score,
            fraud_signals=list(row.fraud_signals or []),
            review_priority=row.review_priority,
            admin_note=row.admin_note,
            processed_by=row.processed_by,
            processed_at=row.processed_at,
            rejection_reason=row.rejection_reason,
            payout_reference=row.payout_reference,
            created_at=row.created_at,
        )


class WithdrawalActionRequest(CamelModel):
    action: Literal["approve", "reject"]
    rejection_reason: Optional[str] = None
    admin_note: Optional[str] = None
