"""Data models for positions, pool risk reports and permits."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

WAD = 10**18
HEALTH_FACTOR_ONE = WAD

# "Everything outstanding" for repay (max uint256).
REPAY_ALL = 2**256 - 1


class RateMode(IntEnum):
    STABLE = 1
    VARIABLE = 2


class PositionState(str, Enum):
    ACTIVE = "active"
    PARTIALLY_WOUND_DOWN = "partially_wound_down"
    CLOSED = "closed"


def saturating_sub(value: int, amount: int) -> int:
    """Subtract ``amount`` from ``value`` clamping at zero."""
    return value - amount if amount < value else 0


@dataclass
class Position:
    """Borrow position tracked by the ledger.

    Amounts are what this ledger attributes to the position; the pool is the
    authority on what the pooled account actually holds and owes.
    """

    id: int
    owner: str
    collateral_asset: str
    collateral_amount: int
    borrow_asset: str
    borrow_amount: int
    rate_mode: RateMode
    state: PositionState = PositionState.ACTIVE

    @property
    def active(self) -> bool:
        return self.state is not PositionState.CLOSED

    def add_collateral(self, amount: int) -> None:
        self.collateral_amount += amount

    def add_debt(self, amount: int) -> None:
        self.borrow_amount += amount

    def reduce_collateral(self, amount: int) -> None:
        self.collateral_amount = saturating_sub(self.collateral_amount, amount)
        self._wind_down()

    def reduce_debt(self, amount: int) -> None:
        self.borrow_amount = saturating_sub(self.borrow_amount, amount)
        self._wind_down()

    def close(self) -> None:
        """Terminal transition; both legs are zeroed."""
        self.collateral_amount = 0
        self.borrow_amount = 0
        self.state = PositionState.CLOSED

    def deactivate(self) -> None:
        """Terminal transition keeping whatever residue the ledger still tracks."""
        self.state = PositionState.CLOSED

    def mark_wound_down(self) -> None:
        if self.state is PositionState.ACTIVE:
            self.state = PositionState.PARTIALLY_WOUND_DOWN

    def _wind_down(self) -> None:
        if self.collateral_amount == 0 and self.borrow_amount == 0:
            self.deactivate()
        else:
            self.mark_wound_down()


@dataclass
class SupplyPosition:
    """Deposit-only position."""

    id: int
    owner: str
    asset: str
    amount: int
    active: bool = True


@dataclass(frozen=True)
class AccountRisk:
    """Aggregate account metrics as reported by the pool.

    Values are in the pool's base currency; thresholds are basis points and
    ``health_factor`` is WAD scaled (``10**18`` == 1.0).
    """

    total_collateral_value: int
    total_debt_value: int
    available_borrow_value: int
    liquidation_threshold: int
    loan_to_value: int
    health_factor: int

    @property
    def is_healthy(self) -> bool:
        return self.health_factor > HEALTH_FACTOR_ONE

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < HEALTH_FACTOR_ONE

    @property
    def health_factor_ratio(self) -> float:
        return self.health_factor / WAD


@dataclass(frozen=True)
class LiquidationResult:
    """Amounts settled by a liquidation call.

    ``liquidated_collateral`` is ``None`` when the pool did not report it.
    """

    debt_covered: int
    liquidated_collateral: int | None = None


@dataclass(frozen=True)
class Permit:
    """Signed EIP-2612 style delegation granting ``spender`` an allowance."""

    asset: str
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int
    signature: bytes

    def split_signature(self) -> tuple[int, bytes, bytes]:
        """Return ``(v, r, s)`` from the 65-byte signature."""
        sig = bytes(self.signature)
        if len(sig) != 65:
            raise ValueError(f"Signature must be 65 bytes, got {len(sig)}")
        v = sig[64]
        if v < 27:
            v += 27
        return v, sig[:32], sig[32:64]
