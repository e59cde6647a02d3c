"""
CurrencyConverter: points to USD.

usd = (points / pointsPerDollar) * countryMultiplier * globalMargin

All arithmetic is Decimal and the result is rounded half-even to cents. The
quote shown to a user and the amount frozen on a withdrawal both come from
``to_usd`` so they can never disagree.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional

from economy_engine.domains.economy.entities import EconomyConfig
from economy_engine.domains.economy.errors import InvalidAmount

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Quote:
    points: int
    country: Optional[str]
    country_multiplier: float
    global_margin: float
    points_per_dollar: int
    amount_usd: Decimal
    usd_per_1000_points: Decimal


class CurrencyConverter:
    def __init__(self, config: EconomyConfig):
        self.config = config

    def _raw_usd(self, points: int, country_code: Optional[str]) -> Decimal:
        factor = Decimal(str(self.config.country_multiplier(country_code)))
        margin = Decimal(str(self.config.global_margin))
        return Decimal(points) / Decimal(self.config.points_per_dollar) * factor * margin

    def to_usd(self, points: int, country_code: Optional[str] = None) -> Decimal:
        if points is None or points <= 0:
            raise InvalidAmount(
                "Points must be greater than zero", {"points": points}
            )
        return self._raw_usd(points, country_code).quantize(CENT, rounding=ROUND_HALF_EVEN)

    def to_cents(self, points: int, country_code: Optional[str] = None) -> int:
        return int(self.to_usd(points, country_code) * 100)

    def quote(self, points: int, country_code: Optional[str] = None) -> Quote:
        amount = self.to_usd(points, country_code)
        return Quote(
            points=points,
            country=country_code.upper() if country_code else None,
            country_multiplier=self.config.country_multiplier(country_code),
            global_margin=self.config.global_margin,
            points_per_dollar=self.config.points_per_dollar,
            amount_usd=amount,
            usd_per_1000_points=self.to_usd(1000, country_code),
        )
