"""Supply ledger — deposit-only positions and per-asset aggregates."""
from __future__ import annotations

import logging
from collections.abc import Iterator

from ..auth.permit import PermitAuthorizer
from ..errors import InvalidAmount, NotActive, NotOwner, PoolRejected, UnknownPosition
from ..events import (
    EventBus,
    SupplyPositionClosed,
    SupplyPositionCreated,
    SupplyPositionIncreased,
    SupplyPositionWithdrawn,
)
from ..interfaces.pool import LendingPool
from ..interfaces.token import TokenGateway
from ..locks import KeyedLock
from ..models import Permit, SupplyPosition, saturating_sub

logger = logging.getLogger(__name__)


class SupplyLedger:
    """Tracks deposit-only positions held in the pooled account.

    Deposits carry no debt, so none of these operations consult the pool's
    health factor.
    """

    def __init__(
        self,
        pool: LendingPool,
        tokens: TokenGateway,
        account: str,
        *,
        authorizer: PermitAuthorizer | None = None,
        events: EventBus | None = None,
        locks: KeyedLock | None = None,
        referral_code: int = 0,
    ) -> None:
        self._pool = pool
        self._tokens = tokens
        self._account = account
        self._authorizer = authorizer or PermitAuthorizer(tokens)
        self._events = events or EventBus()
        self._locks = locks or KeyedLock()
        self._referral_code = referral_code

        self._positions: dict[int, SupplyPosition] = {}
        self._by_owner: dict[str, list[int]] = {}
        self._totals: dict[str, int] = {}
        self._next_id = 1
        self._active_count = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_supply_position(self, supply_id: int) -> SupplyPosition:
        try:
            return self._positions[supply_id]
        except KeyError:
            raise UnknownPosition(supply_id) from None

    def supply_positions_of(self, owner: str) -> list[SupplyPosition]:
        return [self._positions[i] for i in self._by_owner.get(owner.lower(), [])]

    def total_supplied(self, asset: str) -> int:
        return self._totals.get(asset.lower(), 0)

    @property
    def active_count(self) -> int:
        return self._active_count

    def __iter__(self) -> Iterator[SupplyPosition]:
        return iter(self._positions.values())

    def __len__(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owned_active(self, caller: str, supply_id: int) -> SupplyPosition:
        position = self.get_supply_position(supply_id)
        if position.owner.lower() != caller.lower():
            raise NotOwner(supply_id, caller)
        if not position.active:
            raise NotActive(supply_id)
        return position

    def _add_total(self, asset: str, amount: int) -> None:
        key = asset.lower()
        self._totals[key] = self._totals.get(key, 0) + amount

    def _sub_total(self, asset: str, amount: int) -> None:
        key = asset.lower()
        self._totals[key] = saturating_sub(self._totals.get(key, 0), amount)

    def _deactivate(self, position: SupplyPosition) -> None:
        position.active = False
        self._active_count -= 1

    async def _deposit(
        self, caller: str, asset: str, amount: int, permit: Permit | None
    ) -> None:
        await self._authorizer.pull(asset, caller, self._account, amount, permit)
        try:
            await self._pool.supply(asset, amount, self._account, self._referral_code)
        except PoolRejected:
            logger.warning("Supply of %d %s rejected, refunding %s", amount, asset, caller)
            await self._tokens.transfer(asset, caller, amount)
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def open_supply(
        self, caller: str, asset: str, amount: int, permit: Permit | None = None
    ) -> int:
        """Deposit ``amount`` of ``asset`` into the pool as a new position."""
        if amount <= 0:
            raise InvalidAmount("amount", amount)

        async with self._locks.hold(("account", self._account.lower())):
            await self._deposit(caller, asset, amount, permit)

            position = SupplyPosition(
                id=self._next_id, owner=caller, asset=asset, amount=amount
            )
            self._next_id += 1
            self._positions[position.id] = position
            self._by_owner.setdefault(caller.lower(), []).append(position.id)
            self._add_total(asset, amount)
            self._active_count += 1

        logger.info(
            "Supply position %d opened: %d of %s for %s",
            position.id, amount, asset, caller,
        )
        await self._events.publish(
            SupplyPositionCreated(position.id, caller, asset, amount)
        )
        return position.id

    async def increase_supply(
        self, caller: str, supply_id: int, amount: int, permit: Permit | None = None
    ) -> None:
        if amount <= 0:
            raise InvalidAmount("amount", amount)
        position = self._owned_active(caller, supply_id)

        async with self._locks.hold(
            ("supply", supply_id), ("account", self._account.lower())
        ):
            position = self._owned_active(caller, supply_id)
            await self._deposit(caller, position.asset, amount, permit)
            position.amount += amount
            self._add_total(position.asset, amount)

        await self._events.publish(
            SupplyPositionIncreased(supply_id, position.owner, position.asset, amount)
        )

    async def withdraw_supply(self, caller: str, supply_id: int, amount: int) -> int:
        """Withdraw up to ``amount``; return what the pool actually released."""
        position = self._owned_active(caller, supply_id)
        if amount <= 0 or amount > position.amount:
            raise InvalidAmount("amount", amount)

        async with self._locks.hold(
            ("supply", supply_id), ("account", self._account.lower())
        ):
            position = self._owned_active(caller, supply_id)
            if amount > position.amount:
                raise InvalidAmount("amount", amount)

            actual = await self._pool.withdraw(position.asset, amount, caller)
            position.amount = saturating_sub(position.amount, actual)
            self._sub_total(position.asset, actual)
            closed = position.amount == 0
            if closed:
                self._deactivate(position)

        if actual != amount:
            logger.warning(
                "Supply position %d: requested %d, pool released %d",
                supply_id, amount, actual,
            )
        await self._events.publish(
            SupplyPositionWithdrawn(supply_id, position.owner, position.asset, actual)
        )
        if closed:
            await self._events.publish(
                SupplyPositionClosed(supply_id, position.owner, position.asset, actual)
            )
        return actual

    async def close_supply(self, caller: str, supply_id: int) -> int:
        """Withdraw everything left and deactivate the position."""
        self._owned_active(caller, supply_id)

        async with self._locks.hold(
            ("supply", supply_id), ("account", self._account.lower())
        ):
            position = self._owned_active(caller, supply_id)
            remaining = position.amount
            actual = 0
            if remaining > 0:
                actual = await self._pool.withdraw(position.asset, remaining, caller)
            # The aggregate mirrors the sum of open positions, so the whole
            # remainder leaves it even if the pool released less.
            self._sub_total(position.asset, remaining)
            position.amount = 0
            self._deactivate(position)

        if actual < remaining:
            logger.warning(
                "Supply position %d closed with %d of %d released by the pool",
                supply_id, actual, remaining,
            )
        logger.info("Supply position %d closed, %d returned", supply_id, actual)
        await self._events.publish(
            SupplyPositionClosed(supply_id, position.owner, position.asset, actual)
        )
        return actual
