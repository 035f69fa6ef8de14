"""
Service Fee Engine  (Strategy Pattern)
======================================

Formula
-------
Fee = max(Minimum_Fee, Distance x Rate_Per_KM) x (1 - Promo_Discount)

* Shipper and carrier are charged independently, each with its own rate.
* Each side is priced by folding the chain per-km -> minimum -> promo over
  a running fee, so the minimum is applied before the promo discount.

Complexity: O(1) per fee calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ServiceFees:
    shipper_fee: float
    carrier_fee: float

    @property
    def total(self) -> float:
        return round(self.shipper_fee + self.carrier_fee, 2)


# ── Strategy hierarchy ────────────────────────────────────────────────


class FeeStrategy(ABC):
    @abstractmethod
    def apply(self, fee: float, distance_km: float, rate_per_km: float) -> float:
        """Return the fee after this step, given the fee so far."""


class PerKmFee(FeeStrategy):
    def apply(self, fee: float, distance_km: float, rate_per_km: float) -> float:
        return fee + distance_km * rate_per_km


class MinimumFee(FeeStrategy):
    def __init__(self, minimum: float = 0.0):
        self.minimum = minimum

    def apply(self, fee: float, distance_km: float, rate_per_km: float) -> float:
        return max(self.minimum, fee)


class PromoDiscountFee(FeeStrategy):
    def __init__(self, discount_pct: float = 0.0):
        self.discount = min(max(discount_pct, 0.0), 100.0) / 100.0

    def apply(self, fee: float, distance_km: float, rate_per_km: float) -> float:
        return fee * (1 - self.discount)


# ── Engine facade ─────────────────────────────────────────────────────


class ServiceFeeCalculator:
    """High-level API used by the settlement gateway."""

    def __init__(
        self,
        shipper_rate_per_km: float = 1.5,
        carrier_rate_per_km: float = 1.0,
        minimum_fee: float = 0.0,
        promo_discount_pct: float = 0.0,
    ):
        self.shipper_rate_per_km = shipper_rate_per_km
        self.carrier_rate_per_km = carrier_rate_per_km
        self.chain: list[FeeStrategy] = [
            PerKmFee(),
            MinimumFee(minimum_fee),
            PromoDiscountFee(promo_discount_pct),
        ]

    def fee_for(self, distance_km: float, rate_per_km: float) -> float:
        fee = 0.0
        for strategy in self.chain:
            fee = strategy.apply(fee, distance_km, rate_per_km)
        return round(fee, 2)

    def calculate(self, distance_km: float | None) -> ServiceFees:
        distance = max(distance_km or 0.0, 0.0)
        return ServiceFees(
            shipper_fee=self.fee_for(distance, self.shipper_rate_per_km),
            carrier_fee=self.fee_for(distance, self.carrier_rate_per_km),
        )
