"""Unit tests for fare estimation and the settlement price bound."""

from decimal import Decimal

import pytest

from ridehail.domain.enums import RideType
from ridehail.domain.errors import InvalidInput
from ridehail.domain.geo import haversine_km
from ridehail.domain.pricing import (
    MAX_AMOUNT,
    FareEstimator,
    RoundedPricing,
    TariffPricing,
    check_amount,
    settlement_ceiling,
    to_money,
)


class TestPricingStrategies:
    def test_tariff_pricing(self):
        strategy = TariffPricing(600, 300)
        assert strategy.calculate(4.0) == Decimal("1800")  # 600 + 4*300

    def test_rounding_up_to_step(self):
        strategy = RoundedPricing(TariffPricing(600, 300), step=50, minimum=500)
        assert strategy.calculate(3.3) == Decimal("1600")  # 1590 -> 1600

    def test_exact_step_is_unchanged(self):
        strategy = RoundedPricing(TariffPricing(600, 300), step=50, minimum=500)
        assert strategy.calculate(2.0) == Decimal("1200")

    def test_minimum_fare_floor(self):
        strategy = RoundedPricing(TariffPricing(100, 50), step=50, minimum=500)
        assert strategy.calculate(1.0) == Decimal("500")


class TestFareEstimator:
    def setup_method(self):
        self.fares = FareEstimator(
            {
                RideType.RIDE: (600, 300),
                RideType.MOTO: (400, 180),
                RideType.DELIVERY: (1000, 450),
            },
            rounding_step=50,
            minimum_fare=500,
        )

    def test_ride(self):
        assert self.fares.estimate(RideType.RIDE, 4.0) == Decimal("1800.00")

    def test_moto(self):
        assert self.fares.estimate(RideType.MOTO, 1.0) == Decimal("600.00")  # 580 -> 600

    def test_delivery(self):
        assert self.fares.estimate(RideType.DELIVERY, 2.0) == Decimal("1900.00")

    def test_negative_distance_treated_as_zero(self):
        assert self.fares.estimate(RideType.RIDE, -3.0) == Decimal("600.00")

    def test_result_has_two_decimal_places(self):
        assert self.fares.estimate(RideType.RIDE, 3.3).as_tuple().exponent == -2


class TestSettlementCeiling:
    def test_twice_requested(self):
        assert settlement_ceiling(Decimal("1500"), 2) == Decimal("3000.00")

    def test_fractional_multiplier(self):
        assert settlement_ceiling("1000", Decimal("1.5")) == Decimal("1500.00")


class TestMoney:
    @pytest.mark.parametrize(
        "value,expected",
        [(0.1, "0.10"), ("2000", "2000.00"), (Decimal("1.005"), "1.01"), (7, "7.00")],
    )
    def test_to_money(self, value, expected):
        assert to_money(value) == Decimal(expected)

    def test_check_amount_accepts_column_maximum(self):
        assert check_amount("9999999999.99") == MAX_AMOUNT
        assert check_amount(Decimal("-9999999999.99")) == -MAX_AMOUNT

    @pytest.mark.parametrize(
        "value",
        [
            Decimal("1e13"),
            Decimal("1e40"),
            "10000000000.00",
            "9999999999.995",
            -10_000_000_000,
            Decimal("Infinity"),
        ],
    )
    def test_check_amount_rejects_overflow(self, value):
        with pytest.raises(InvalidInput, match="Fare exceeds"):
            check_amount(value, "Fare")


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(-8.8, 13.2, -8.8, 13.2) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.1)
