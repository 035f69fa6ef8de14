"""
Settlement Trigger
==================

Fires once per trip, inside the DELIVERED -> COMPLETED transaction.
Settlement is a *precondition* of completion: when the fee collaborator
reports insufficient funds the trigger raises ``SettlementFailed`` and the
enclosing transaction (trip + load update) rolls back.

The collaborator contract is ``SettlementGateway``.  The bundled
``WalletSettlementGateway`` deducts from ``financial_accounts`` in the same
session, writing one ``journal_entries`` row per party; the unique index on
``(trip_id, organization_id, kind)`` makes a repeated call a no-op.
Balances and journal amounts are ``Numeric(12, 2)``; fees are quantized to
cents before they touch either.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.config import settings
from loadboard.domain.errors import SettlementFailed
from loadboard.domain.fees import ServiceFeeCalculator, ServiceFees
from loadboard.infrastructure.repositories import FinancialAccountRepository

logger = logging.getLogger(__name__)

SHIPPER_FEE = "SHIPPER_SERVICE_FEE"
CARRIER_FEE = "CARRIER_SERVICE_FEE"
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


class SettlementOutcome(str, enum.Enum):
    SETTLED = "SETTLED"
    ALREADY_SETTLED = "ALREADY_SETTLED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


@dataclass(frozen=True)
class SettlementResult:
    outcome: SettlementOutcome
    fees: ServiceFees
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != SettlementOutcome.INSUFFICIENT_FUNDS


class SettlementGateway(Protocol):
    async def compute_fees(self, trip, load) -> ServiceFees: ...

    async def deduct_fees(self, trip, fees: ServiceFees) -> SettlementResult: ...


class WalletSettlementGateway:
    def __init__(
        self,
        session: AsyncSession,
        calculator: ServiceFeeCalculator | None = None,
    ):
        self.accounts = FinancialAccountRepository(session)
        self.calculator = calculator or default_fee_calculator()

    async def compute_fees(self, trip, load) -> ServiceFees:
        return self.calculator.calculate(load.distance_km)

    async def deduct_fees(self, trip, fees: ServiceFees) -> SettlementResult:
        existing = await self.accounts.entries_for_trip(trip.id)
        if existing:
            recorded = {e.kind: float(e.amount) for e in existing}
            return SettlementResult(
                SettlementOutcome.ALREADY_SETTLED,
                ServiceFees(
                    shipper_fee=recorded.get(SHIPPER_FEE, 0.0),
                    carrier_fee=recorded.get(CARRIER_FEE, 0.0),
                ),
            )

        shipper_account = await self.accounts.get_for_update(trip.shipper_id)
        carrier_account = await self.accounts.get_for_update(trip.carrier_id)

        for party, account, fee in (
            ("shipper", shipper_account, fees.shipper_fee),
            ("carrier", carrier_account, fees.carrier_fee),
        ):
            balance = to_money(account.balance if account is not None else 0)
            if to_money(fee) > balance:
                return SettlementResult(
                    SettlementOutcome.INSUFFICIENT_FUNDS,
                    fees,
                    detail=(
                        f"Insufficient {party} balance for fee deduction "
                        f"(required {fee:.2f}, available {balance:.2f})"
                    ),
                )

        if fees.shipper_fee > 0:
            amount = to_money(fees.shipper_fee)
            shipper_account.balance = to_money(shipper_account.balance) - amount
            await self.accounts.add_entry(trip.id, trip.shipper_id, SHIPPER_FEE, amount)
        if fees.carrier_fee > 0:
            amount = to_money(fees.carrier_fee)
            carrier_account.balance = to_money(carrier_account.balance) - amount
            await self.accounts.add_entry(trip.id, trip.carrier_id, CARRIER_FEE, amount)
        return SettlementResult(SettlementOutcome.SETTLED, fees)


class SettlementTrigger:
    """Runs the fee collaborator and turns a refusal into ``SettlementFailed``."""

    def __init__(self, gateway: SettlementGateway):
        self.gateway = gateway

    async def quote(self, trip, load) -> ServiceFees:
        return await self.gateway.compute_fees(trip, load)

    async def settle(self, trip, load) -> SettlementResult:
        fees = await self.gateway.compute_fees(trip, load)
        result = await self.gateway.deduct_fees(trip, fees)
        if not result.succeeded:
            logger.warning("Settlement refused for trip %s: %s", trip.id, result.detail)
            raise SettlementFailed(
                "Cannot complete trip: fee deduction failed",
                details={
                    "reason": result.detail,
                    "shipper_fee": f"{fees.shipper_fee:.2f}",
                    "carrier_fee": f"{fees.carrier_fee:.2f}",
                },
            )
        logger.info(
            "Trip %s settled (%s): shipper %.2f, carrier %.2f",
            trip.id,
            result.outcome.value,
            result.fees.shipper_fee,
            result.fees.carrier_fee,
        )
        return result


def default_fee_calculator() -> ServiceFeeCalculator:
    return ServiceFeeCalculator(
        shipper_rate_per_km=settings.shipper_fee_rate_per_km,
        carrier_rate_per_km=settings.carrier_fee_rate_per_km,
        minimum_fee=settings.minimum_service_fee,
        promo_discount_pct=settings.promo_discount_pct,
    )
