"""
Fare estimation and settlement price bounds  (Strategy Pattern)
===============================================================

Formula
-------
Estimate = ceil((Base_Fare + Distance x Rate_Per_KM) / Step) x Step,
floored at Minimum_Fare.

Each ride type (ride / moto / delivery) has its own base fare and per-km
rate.  The estimate is only used when the passenger does not make an offer;
an explicit offer becomes the requested price as-is.

Settlement bound
----------------
A driver may settle at most ``multiplier x agreed price`` without a fresh
passenger approval, where the agreed price is the committed price when a
proposal was accepted and the requested price otherwise.

Amounts are stored as ``NUMERIC(12, 2)``; ``check_amount`` rejects anything
that would not fit before it reaches the database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Mapping, Union

from .enums import RideType
from .errors import InvalidInput

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")

Number = Union[Decimal, float, int, str]


def to_money(value: Number) -> Decimal:
    """Quantize to two decimal places (floats go through ``str`` first)."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def check_amount(value: Number, label: str = "Amount") -> Decimal:
    """
    ``to_money`` for external input: rejects values a NUMERIC(12,2) column
    cannot hold, before quantizing them can overflow the decimal context.
    """
    raw = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    if not raw.is_finite() or abs(raw) > MAX_AMOUNT + CENT:
        raise InvalidInput(f"{label} exceeds {MAX_AMOUNT}", maximum=str(MAX_AMOUNT))
    amount = to_money(raw)
    if abs(amount) > MAX_AMOUNT:
        raise InvalidInput(f"{label} exceeds {MAX_AMOUNT}", maximum=str(MAX_AMOUNT))
    return amount


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float) -> Decimal: ...


class TariffPricing(PricingStrategy):
    def __init__(self, base_fare: Number, rate_per_km: Number):
        self.base_fare = to_money(base_fare)
        self.rate_per_km = to_money(rate_per_km)

    def calculate(self, distance_km: float) -> Decimal:
        return self.base_fare + to_money(distance_km) * self.rate_per_km


class RoundedPricing(PricingStrategy):
    """Rounds another strategy's result up to the nearest *step*, with a floor."""

    def __init__(self, inner: PricingStrategy, step: Number, minimum: Number):
        self.inner = inner
        self.step = Decimal(str(step))
        self.minimum = to_money(minimum)

    def calculate(self, distance_km: float) -> Decimal:
        raw = self.inner.calculate(distance_km)
        if self.step > 0:
            raw = (raw / self.step).to_integral_value(rounding=ROUND_CEILING) * self.step
        return to_money(max(raw, self.minimum))


# ── Engine facade ─────────────────────────────────────────────────────


class FareEstimator:
    """High-level API used by the dispatch engine."""

    def __init__(
        self,
        tariffs: Mapping[RideType, tuple[Number, Number]],
        rounding_step: Number = 50,
        minimum_fare: Number = 500,
    ):
        self.minimum_fare = to_money(minimum_fare)
        self._strategies: dict[RideType, PricingStrategy] = {
            RideType(ride_type): RoundedPricing(
                TariffPricing(base, per_km), rounding_step, minimum_fare
            )
            for ride_type, (base, per_km) in tariffs.items()
        }

    def estimate(self, ride_type: RideType, distance_km: float) -> Decimal:
        strategy = self._strategies.get(RideType(ride_type))
        if strategy is None:
            strategy = self._strategies[RideType.RIDE]
        return strategy.calculate(max(distance_km, 0.0))


def settlement_ceiling(agreed_price: Number, multiplier: Number) -> Decimal:
    """Highest final price a driver may settle without passenger re-approval."""
    return to_money(Decimal(str(agreed_price)) * Decimal(str(multiplier)))
