"""Lending pool facade — the only surface the core uses to reach the pool."""
from typing import Protocol

from ..models import AccountRisk, LiquidationResult, Permit, RateMode


class LendingPool(Protocol):
    """Abstract interface of the external lending pool.

    Every method is remote and may raise ``PoolRejected`` when the pool
    refuses the call. ``borrow`` never truncates the amount silently.
    """

    async def supply(
        self, asset: str, amount: int, on_behalf_of: str, referral_code: int = 0
    ) -> None: ...

    async def supply_with_permit(
        self, asset: str, amount: int, on_behalf_of: str, permit: Permit,
        referral_code: int = 0,
    ) -> None: ...

    async def withdraw(self, asset: str, amount: int, to: str) -> int: ...

    async def borrow(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        referral_code: int = 0,
    ) -> None: ...

    async def repay(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str
    ) -> int: ...

    async def repay_with_permit(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        permit: Permit,
    ) -> int: ...

    async def set_collateral_flag(self, asset: str, enabled: bool) -> None: ...

    async def get_account_risk(self, account: str) -> AccountRisk: ...

    async def liquidate(
        self, collateral_asset: str, debt_asset: str, account: str,
        debt_to_cover: int, receive_receipt_token: bool,
    ) -> LiquidationResult: ...

    async def get_receipt_token_address(self, asset: str) -> str: ...
