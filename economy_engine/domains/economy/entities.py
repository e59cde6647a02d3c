import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from economy_engine.domains.economy.errors import (MalformedMethodFields,
                                                   UnsupportedMethod)


class EarningSource(str, Enum):
    ADS = "ads"
    NEWS = "news"
    TRIVIA = "trivia"
    GAMES = "games"
    OFFERS = "offers"
    SURVEYS = "surveys"
    REFERRALS = "referrals"


# Action types the platform emits and the bucket each one credits
ACTION_SOURCES: Mapping[str, EarningSource] = MappingProxyType(
    {
        "watchAd": EarningSource.ADS,
        "readNews": EarningSource.NEWS,
        "triviaCorrect": EarningSource.TRIVIA,
        "triviaBonus": EarningSource.TRIVIA,
        "gamePlaytime": EarningSource.GAMES,
        "dailySpin": EarningSource.GAMES,
        "offerComplete": EarningSource.OFFERS,
        "surveyComplete": EarningSource.SURVEYS,
        "referralSignup": EarningSource.REFERRALS,
    }
)


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED)


class UserTier(str, Enum):
    NEW = "new"
    REGULAR = "regular"
    VERIFIED = "verified"
    VIP = "vip"


# ---------------------------------------------------------------------------
# Economy config snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreakTier:
    min_days: int
    multiplier: float
    label: str


@dataclass(frozen=True)
class HappyHourWindow:
    name: str
    start_hour: int
    end_hour: int
    multiplier: float

    def contains(self, moment: datetime) -> bool:
        return self.start_hour <= moment.hour < self.end_hour


@dataclass(frozen=True)
class WithdrawalTier:
    min_withdrawal_usd: Decimal
    daily_limit_usd: Decimal
    weekly_limit: int


@dataclass(frozen=True)
class EconomyConfig:
    """Immutable snapshot of the admin-owned economy parameters."""

    earning_rates: Mapping[str, float]
    daily_limits: Mapping[str, int]
    global_margin: float
    points_per_dollar: int
    country_multipliers: Mapping[str, float]
    max_multiplier: float = 5.0
    streak_tiers: Tuple[StreakTier, ...] = ()
    happy_hours: Tuple[HappyHourWindow, ...] = ()
    weekend_multiplier: float = 1.0
    referral_multiplier: float = 1.0
    minimum_withdrawal_points: int = 1000
    withdrawal_tiers: Mapping[UserTier, WithdrawalTier] = field(
        default_factory=lambda: MappingProxyType({})
    )
    version: Optional[int] = None

    def __post_init__(self):
        # Freeze the maps handed in so consumers can't mutate a shared snapshot
        for name in ("earning_rates", "daily_limits", "country_multipliers", "withdrawal_tiers"):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))
        object.__setattr__(
            self,
            "streak_tiers",
            tuple(sorted(self.streak_tiers, key=lambda tier: tier.min_days)),
        )
        object.__setattr__(self, "happy_hours", tuple(self.happy_hours))

    def country_multiplier(self, country_code: Optional[str]) -> float:
        if not country_code:
            return 1.0
        return self.country_multipliers.get(country_code.upper(), 1.0)

    def to_dict(self) -> Dict[str, Any]:
        """camelCase document as stored and served to the admin surface."""
        return {
            "earningRates": dict(self.earning_rates),
            "dailyLimits": dict(self.daily_limits),
            "globalMargin": self.global_margin,
            "pointsPerDollar": self.points_per_dollar,
            "countryMultipliers": dict(self.country_multipliers),
            "maxMultiplier": self.max_multiplier,
            "streakTiers": [
                {"minDays": t.min_days, "multiplier": t.multiplier, "label": t.label}
                for t in self.streak_tiers
            ],
            "happyHours": [
                {
                    "name": w.name,
                    "startHour": w.start_hour,
                    "endHour": w.end_hour,
                    "multiplier": w.multiplier,
                }
                for w in self.happy_hours
            ],
            "weekendMultiplier": self.weekend_multiplier,
            "referralMultiplier": self.referral_multiplier,
            "minimumWithdrawalPoints": self.minimum_withdrawal_points,
            "withdrawalTiers": {
                tier.value: {
                    "minWithdrawalUSD": float(limits.min_withdrawal_usd),
                    "dailyLimitUSD": float(limits.daily_limit_usd),
                    "weeklyLimit": limits.weekly_limit,
                }
                for tier, limits in self.withdrawal_tiers.items()
            },
        }


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppliedMultiplier:
    name: str
    factor: float
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "factor": self.factor, "source": self.source}


@dataclass(frozen=True)
class ActiveBoost:
    factor: float
    expires_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class MultiplierResolution:
    factors: Tuple[AppliedMultiplier, ...]
    composite: Decimal
    capped: bool
    boost_consumed: bool


# ---------------------------------------------------------------------------
# Payout methods (tagged union)
# ---------------------------------------------------------------------------


class PayoutMethodType(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CRYPTO = "crypto"
    AIRTIME = "airtime"
    GIFT_CARD = "gift_card"


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?\d{7,15}$")
_ACCOUNT_NUMBER_RE = re.compile(r"^\d{6,20}$")
_WALLET_RE = re.compile(r"^[A-Za-z0-9:_-]{20,128}$")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _PayoutMethodBase:
    kind: ClassVar[PayoutMethodType]
    required: ClassVar[Tuple[str, ...]]
    optional: ClassVar[Tuple[str, ...]] = ()

    def problems(self) -> Dict[str, str]:
        return {}

    def destination(self) -> str:
        raise NotImplementedError

    def fingerprint(self) -> str:
        """Stable hash of where the money goes, for cross-account reuse checks."""
        raw = f"{self.kind.value}:{self.destination().strip().lower()}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"method": self.kind.value}
        for name in self.required + self.optional:
            value = getattr(self, name)
            if value is not None:
                data[_camel(name)] = value
        return data


@dataclass(frozen=True)
class BankTransfer(_PayoutMethodBase):
    bank_code: str
    account_number: str
    account_name: Optional[str] = None
    bank_name: Optional[str] = None

    kind: ClassVar[PayoutMethodType] = PayoutMethodType.BANK_TRANSFER
    required: ClassVar[Tuple[str, ...]] = ("bank_code", "account_number")
    optional: ClassVar[Tuple[str, ...]] = ("account_name", "bank_name")

    def problems(self) -> Dict[str, str]:
        if not _ACCOUNT_NUMBER_RE.match(self.account_number):
            return {"accountNumber": "must be 6-20 digits"}
        return {}

    def destination(self) -> str:
        return f"{self.bank_code}:{self.account_number}"


@dataclass(frozen=True)
class PayPal(_PayoutMethodBase):
    paypal_email: str

    kind: ClassVar[PayoutMethodType] = PayoutMethodType.PAYPAL
    required: ClassVar[Tuple[str, ...]] = ("paypal_email",)

    def problems(self) -> Dict[str, str]:
        if not _EMAIL_RE.match(self.paypal_email):
            return {"paypalEmail": "must be an email address"}
        return {}

    def destination(self) -> str:
        return self.paypal_email


@dataclass(frozen=True)
class Crypto(_PayoutMethodBase):
    network: str
    wallet_address: str

    kind: ClassVar[PayoutMethodType] = PayoutMethodType.CRYPTO
    required: ClassVar[Tuple[str, ...]] = ("network", "wallet_address")

    def problems(self) -> Dict[str, str]:
        if not _WALLET_RE.match(self.wallet_address):
            return {"walletAddress": "does not look like a wallet address"}
        return {}

    def destination(self) -> str:
        return f"{self.network}:{self.wallet_address}"


@dataclass(frozen=True)
class Airtime(_PayoutMethodBase):
    phone_number: str
    carrier: Optional[str] = None

    kind: ClassVar[PayoutMethodType] = PayoutMethodType.AIRTIME
    required: ClassVar[Tuple[str, ...]] = ("phone_number",)
    optional: ClassVar[Tuple[str, ...]] = ("carrier",)

    def problems(self) -> Dict[str, str]:
        if not _PHONE_RE.match(self.phone_number.replace(" ", "")):
            return {"phoneNumber": "must be 7-15 digits, optionally prefixed with +"}
        return {}

    def destination(self) -> str:
        return self.phone_number.replace(" ", "")


@dataclass(frozen=True)
class GiftCard(_PayoutMethodBase):
    brand: str
    recipient_email: str

    kind: ClassVar[PayoutMethodType] = PayoutMethodType.GIFT_CARD
    required: ClassVar[Tuple[str, ...]] = ("brand", "recipient_email")

    def problems(self) -> Dict[str, str]:
        if not _EMAIL_RE.match(self.recipient_email):
            return {"recipientEmail": "must be an email address"}
        return {}

    def destination(self) -> str:
        return f"{self.brand}:{self.recipient_email}"


PayoutMethod = Union[BankTransfer, PayPal, Crypto, Airtime, GiftCard]

PAYOUT_METHODS: Mapping[str, type] = MappingProxyType(
    {cls.kind.value: cls for cls in (BankTransfer, PayPal, Crypto, Airtime, GiftCard)}
)

# Field spellings older clients send
_FIELD_ALIASES = {
    "cryptoNetwork": "network",
    "giftCardBrand": "brand",
}


def parse_payout_method(method: str, fields: Mapping[str, Any]) -> PayoutMethod:
    """Build the payout variant for ``method``, validating every field it needs."""
    cls = PAYOUT_METHODS.get((method or "").strip().lower())
    if cls is None:
        raise UnsupportedMethod(method)

    normalized: Dict[str, Any] = {}
    for key, value in fields.items():
        key = _FIELD_ALIASES.get(key, key)
        normalized[key] = value

    values: Dict[str, Any] = {}
    problems: Dict[str, str] = {}
    for name in cls.required + cls.optional:
        value = normalized.get(name, normalized.get(_camel(name)))
        if value is not None and not isinstance(value, str):
            problems[_camel(name)] = "must be a string"
            continue
        value = value.strip() if value else None
        if name in cls.required and not value:
            problems[_camel(name)] = "is required"
            continue
        values[name] = value

    if problems:
        raise MalformedMethodFields(cls.kind.value, problems)

    instance = cls(**values)
    problems = instance.problems()
    if problems:
        raise MalformedMethodFields(cls.kind.value, problems)
    return instance


def payout_method_from_dict(data: Mapping[str, Any]) -> PayoutMethod:
    fields = dict(data)
    return parse_payout_method(fields.pop("method", ""), fields)


# ---------------------------------------------------------------------------
# Risk scoring inputs/outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WithdrawalDraft:
    user_id: str
    amount_points: int
    amount_usd: Decimal
    method: PayoutMethod


@dataclass(frozen=True)
class UserHistory:
    """Point-in-time view of a user, read in the same transaction as the request."""

    as_of: datetime
    account_created_at: Optional[datetime]
    email_verified: bool
    phone_verified: bool
    balance: int
    tier: UserTier
    tier_limits: Optional[WithdrawalTier]
    prior_withdrawals: int = 0
    pending_withdrawals: int = 0
    withdrawn_usd_24h: Decimal = Decimal("0")
    withdrawals_7d: int = 0
    earned_24h: int = 0
    earned_7d: int = 0
    trailing_daily_average: float = 0.0
    shared_device_accounts: int = 0
    shared_ip_accounts: int = 0
    shared_payout_accounts: int = 0

    @property
    def account_age_days(self) -> Optional[float]:
        if self.account_created_at is None:
            return None
        return (self.as_of - self.account_created_at).total_seconds() / 86400


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    signals: Tuple[str, ...]
    contributions: Mapping[str, int]

    @property
    def review_priority(self) -> str:
        return review_priority(self.score)


def review_priority(score: int) -> str:
    """Advisory label for the reviewer queue; never acted on automatically."""
    if score >= 60:
        return "high"
    if score >= 30:
        return "elevated"
    return "low"
