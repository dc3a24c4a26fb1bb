"""Position orchestrator — the borrow-position state machine.

Every position lives in one pooled account held by this service. The ledger
records what each position is owed; the pool's ``get_account_risk`` is the
only input to solvency decisions and is queried fresh every time.

Solvency-gated steps (withdraw, borrow, close) route funds through the
pooled account before they reach the caller. If the post-step health check
fails, the step is compensated while the funds are still held (collateral is
re-supplied, fresh debt is repaid) and ``SolvencyViolation`` is raised with
the ledger unchanged for that step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..auth.permit import PermitAuthorizer
from ..errors import (
    BorrowFailed,
    InsufficientBalance,
    InsufficientBorrowCapacity,
    InvalidAmount,
    InvalidRateMode,
    NotActive,
    NotAdmin,
    NotOwner,
    PoolRejected,
    PositionError,
    PositionHealthy,
    SelfLiquidation,
    SolvencyViolation,
)
from ..events import (
    CollateralAdded,
    CollateralWithdrawn,
    DebtIncreased,
    DebtRepaid,
    EventBus,
    PositionClosed,
    PositionCreated,
    PositionLiquidated,
)
from ..interfaces.pool import LendingPool
from ..interfaces.token import TokenGateway
from ..ledger.book import PositionBook
from ..locks import KeyedLock
from ..models import (
    REPAY_ALL,
    AccountRisk,
    Permit,
    Position,
    RateMode,
    saturating_sub,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BorrowFallback:
    """Borrow attempts: the requested amount, then once at half of it."""

    def attempts(self, requested: int) -> tuple[int, ...]:
        reduced = requested // 2
        if reduced > 0:
            return (requested, reduced)
        return (requested,)


def coerce_rate_mode(value: RateMode | int) -> RateMode:
    if isinstance(value, bool):
        raise InvalidRateMode(f"Invalid interest rate mode: {value!r}")
    try:
        return RateMode(value)
    except ValueError:
        raise InvalidRateMode(f"Invalid interest rate mode: {value!r}") from None


class PositionOrchestrator:
    """Creates, mutates, liquidates and closes borrow positions."""

    def __init__(
        self,
        pool: LendingPool,
        tokens: TokenGateway,
        account: str,
        *,
        admin: str = "",
        authorizer: PermitAuthorizer | None = None,
        events: EventBus | None = None,
        locks: KeyedLock | None = None,
        book: PositionBook | None = None,
        fallback: BorrowFallback | None = None,
        referral_code: int = 0,
    ) -> None:
        self._pool = pool
        self._tokens = tokens
        self._account = account
        self._admin = admin
        self._authorizer = authorizer or PermitAuthorizer(tokens)
        self._events = events or EventBus()
        self._locks = locks or KeyedLock()
        self._book = book or PositionBook()
        self._fallback = fallback or BorrowFallback()
        self._referral_code = referral_code

    @property
    def account(self) -> str:
        return self._account

    @property
    def book(self) -> PositionBook:
        return self._book

    def get_position(self, position_id: int) -> Position:
        return self._book.get(position_id)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _keys(self, position_id: int) -> tuple[tuple[str, object], ...]:
        return (("position", position_id), ("account", self._account.lower()))

    def _owned_active(self, caller: str, position_id: int) -> Position:
        position = self._book.get(position_id)
        if position.owner.lower() != caller.lower():
            raise NotOwner(position_id, caller)
        if not position.active:
            raise NotActive(position_id)
        return position

    async def _risk(self) -> AccountRisk:
        risk = await self._pool.get_account_risk(self._account)
        logger.debug(
            "Account %s health factor %.4f (available borrow %d)",
            self._account, risk.health_factor_ratio, risk.available_borrow_value,
        )
        return risk

    async def _require_healthy(self, stage: str) -> AccountRisk:
        risk = await self._risk()
        if not risk.is_healthy:
            raise SolvencyViolation(risk.health_factor, stage)
        return risk

    # ------------------------------------------------------------------
    # Pool steps
    # ------------------------------------------------------------------

    async def _supply_or_refund(self, asset: str, amount: int, payer: str) -> None:
        """Supply pulled funds to the pool; hand them back to ``payer`` on rejection."""
        try:
            await self._pool.supply(asset, amount, self._account, self._referral_code)
        except PoolRejected:
            logger.warning("Supply of %d %s rejected, refunding %s", amount, asset, payer)
            await self._tokens.transfer(asset, payer, amount)
            raise

    async def _borrow_checked(
        self, asset: str, requested: int, rate_mode: RateMode
    ) -> int:
        """Borrow with the fallback policy, then verify the account is healthy."""
        borrowed = 0
        last_error: PoolRejected | None = None
        for amount in self._fallback.attempts(requested):
            try:
                await self._pool.borrow(
                    asset, amount, rate_mode, self._account, self._referral_code
                )
            except PoolRejected as e:
                last_error = e
                logger.warning("Borrow of %d %s rejected: %s", amount, asset, e.reason)
                continue
            borrowed = amount
            break

        if not borrowed:
            raise BorrowFailed(requested) from last_error
        if borrowed != requested:
            logger.warning("Borrowed %d %s instead of %d", borrowed, asset, requested)

        risk = await self._risk()
        if not risk.is_healthy:
            logger.warning(
                "Health factor %.4f after borrow, repaying %d %s",
                risk.health_factor_ratio, borrowed, asset,
            )
            await self._pool.repay(asset, borrowed, rate_mode, self._account)
            raise SolvencyViolation(risk.health_factor, "post")
        return borrowed

    async def _withdraw_checked(self, asset: str, amount: int) -> int:
        """Withdraw into the pooled account, then verify the account is healthy."""
        withdrawn = await self._pool.withdraw(asset, amount, self._account)
        risk = await self._risk()
        if not risk.is_healthy:
            logger.warning(
                "Health factor %.4f after withdrawal, re-supplying %d %s",
                risk.health_factor_ratio, withdrawn, asset,
            )
            await self._pool.supply(asset, withdrawn, self._account, self._referral_code)
            await self._pool.set_collateral_flag(asset, True)
            raise SolvencyViolation(risk.health_factor, "post")
        return withdrawn

    async def _return_collateral(self, position: Position, recipient: str) -> int:
        """Withdraw all collateral of ``position`` and send it to ``recipient``."""
        if position.collateral_amount == 0:
            await self._require_healthy("post")
            return 0
        withdrawn = await self._withdraw_checked(
            position.collateral_asset, position.collateral_amount
        )
        await self._tokens.transfer(position.collateral_asset, recipient, withdrawn)
        return withdrawn

    def _repay_cap(self, position: Position, amount: int) -> int:
        """Largest repayment that may be sent to the pool for ``position``.

        Debt is owed by the pooled account as a whole. While another active
        position owes the same asset, only this position's tracked debt may
        be repaid so the surplus never settles someone else's loan.
        """
        if self._book.debt_of_others(position.borrow_asset, position.id) == 0:
            return amount
        return min(amount, position.borrow_amount)

    async def _repay(
        self, position: Position, amount: int, payer: str, pulled: int
    ) -> int:
        """Repay ``amount`` for ``position``; refund whatever the pool did not apply."""
        try:
            repaid = await self._pool.repay(
                position.borrow_asset, amount, position.rate_mode, self._account
            )
        except PoolRejected:
            if pulled:
                await self._tokens.transfer(position.borrow_asset, payer, pulled)
            raise
        if pulled > repaid:
            await self._tokens.transfer(position.borrow_asset, payer, pulled - repaid)
        return repaid

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def create_position(
        self,
        caller: str,
        collateral_asset: str,
        collateral_amount: int,
        borrow_asset: str,
        borrow_amount: int,
        rate_mode: RateMode | int,
        permit: Permit | None = None,
    ) -> int:
        """Supply collateral, flag it, borrow against it; return the position id.

        When both borrow attempts fail the collateral stays supplied and
        attributed to the new position, whose id is on ``BorrowFailed``.
        """
        if collateral_amount <= 0:
            raise InvalidAmount("collateral_amount", collateral_amount)
        if borrow_amount <= 0:
            raise InvalidAmount("borrow_amount", borrow_amount)
        mode = coerce_rate_mode(rate_mode)

        async with self._locks.hold(("account", self._account.lower())):
            position = self._book.open(caller, collateral_asset, borrow_asset, mode)
            try:
                await self._authorizer.pull(
                    collateral_asset, caller, self._account, collateral_amount, permit
                )
                await self._supply_or_refund(collateral_asset, collateral_amount, caller)
            except Exception:
                self._book.discard(position.id)
                raise
            position.add_collateral(collateral_amount)
            await self._pool.set_collateral_flag(collateral_asset, True)

            try:
                borrowed = await self._borrow_checked(borrow_asset, borrow_amount, mode)
            except (BorrowFailed, SolvencyViolation) as e:
                logger.warning(
                    "Position %d left with %d %s collateral and no debt: %s",
                    position.id, collateral_amount, collateral_asset, e,
                )
                if isinstance(e, BorrowFailed):
                    e.position_id = position.id
                await self._events.publish(
                    CollateralAdded(position.id, caller, collateral_asset, collateral_amount)
                )
                raise

            await self._tokens.transfer(borrow_asset, caller, borrowed)
            position.add_debt(borrowed)

        logger.info(
            "Position %d created for %s: %d %s collateral, %d %s debt",
            position.id, caller, collateral_amount, collateral_asset,
            borrowed, borrow_asset,
        )
        await self._events.publish(
            PositionCreated(
                position.id, caller, collateral_asset, collateral_amount,
                borrow_asset, borrowed, borrow_amount, mode,
            )
        )
        return position.id

    async def add_collateral(
        self, caller: str, position_id: int, amount: int, permit: Permit | None = None
    ) -> None:
        if amount <= 0:
            raise InvalidAmount("amount", amount)
        self._owned_active(caller, position_id)

        async with self._locks.hold(*self._keys(position_id)):
            position = self._owned_active(caller, position_id)
            await self._authorizer.pull(
                position.collateral_asset, caller, self._account, amount, permit
            )
            await self._supply_or_refund(position.collateral_asset, amount, caller)
            position.add_collateral(amount)
            await self._pool.set_collateral_flag(position.collateral_asset, True)

        logger.info("Position %d: added %d collateral", position_id, amount)
        await self._events.publish(
            CollateralAdded(position_id, position.owner, position.collateral_asset, amount)
        )

    async def withdraw_collateral(
        self, caller: str, position_id: int, amount: int
    ) -> int:
        """Withdraw collateral to the owner; return what the pool released."""
        position = self._owned_active(caller, position_id)
        if amount <= 0 or amount > position.collateral_amount:
            raise InvalidAmount("amount", amount)

        async with self._locks.hold(*self._keys(position_id)):
            position = self._owned_active(caller, position_id)
            if amount > position.collateral_amount:
                raise InvalidAmount("amount", amount)

            await self._require_healthy("pre")
            withdrawn = await self._withdraw_checked(position.collateral_asset, amount)
            await self._tokens.transfer(position.collateral_asset, caller, withdrawn)
            position.reduce_collateral(withdrawn)

        logger.info(
            "Position %d: withdrew %d collateral (%d requested)",
            position_id, withdrawn, amount,
        )
        await self._events.publish(
            CollateralWithdrawn(
                position_id, position.owner, position.collateral_asset, withdrawn
            )
        )
        return withdrawn

    async def increase_borrow(
        self, caller: str, position_id: int, amount: int
    ) -> int:
        """Borrow more against the position; return the amount actually borrowed."""
        if amount <= 0:
            raise InvalidAmount("amount", amount)
        self._owned_active(caller, position_id)

        async with self._locks.hold(*self._keys(position_id)):
            position = self._owned_active(caller, position_id)

            risk = await self._risk()
            if risk.available_borrow_value <= 0:
                raise InsufficientBorrowCapacity(
                    f"No borrowing capacity left on {self._account}"
                )
            if not risk.is_healthy:
                raise SolvencyViolation(risk.health_factor, "pre")

            borrowed = await self._borrow_checked(
                position.borrow_asset, amount, position.rate_mode
            )
            await self._tokens.transfer(position.borrow_asset, caller, borrowed)
            position.add_debt(borrowed)

        logger.info("Position %d: borrowed %d more", position_id, borrowed)
        await self._events.publish(
            DebtIncreased(
                position_id, position.owner, position.borrow_asset, borrowed, amount
            )
        )
        return borrowed

    async def repay_debt(
        self, caller: str, position_id: int, amount: int, permit: Permit | None = None
    ) -> int:
        """Repay debt; the ledger is reduced by what the pool actually applied."""
        if amount <= 0:
            raise InvalidAmount("amount", amount)
        self._owned_active(caller, position_id)

        async with self._locks.hold(*self._keys(position_id)):
            position = self._owned_active(caller, position_id)
            to_repay = self._repay_cap(position, amount)
            if to_repay == 0:
                raise InvalidAmount("amount", amount)
            await self._authorizer.pull(
                position.borrow_asset, caller, self._account, to_repay, permit
            )
            repaid = await self._repay(position, to_repay, caller, pulled=to_repay)
            position.reduce_debt(repaid)

        logger.info(
            "Position %d: repaid %d (%d offered), %d debt left",
            position_id, repaid, amount, position.borrow_amount,
        )
        await self._events.publish(
            DebtRepaid(position_id, position.owner, position.borrow_asset, repaid)
        )
        return repaid

    async def close_position(
        self, caller: str, position_id: int, permit: Permit | None = None
    ) -> int:
        """Repay all debt, return all collateral to the owner; return the collateral sent."""
        self._owned_active(caller, position_id)

        async with self._locks.hold(*self._keys(position_id)):
            position = self._owned_active(caller, position_id)
            await self._require_healthy("pre")

            repaid = 0
            if position.borrow_amount > 0:
                pulled = position.borrow_amount
                await self._authorizer.pull(
                    position.borrow_asset, caller, self._account, pulled, permit
                )
                repaid = await self._repay(
                    position, self._repay_cap(position, REPAY_ALL), caller, pulled=pulled
                )
                position.borrow_amount = saturating_sub(position.borrow_amount, repaid)
                position.mark_wound_down()

            returned = await self._return_collateral(position, caller)
            position.close()

        logger.info(
            "Position %d closed: %d debt repaid, %d collateral returned",
            position_id, repaid, returned,
        )
        await self._events.publish(
            PositionClosed(position_id, position.owner, returned, repaid)
        )
        return returned

    # ------------------------------------------------------------------
    # Third-party / privileged operations
    # ------------------------------------------------------------------

    async def liquidate_position(
        self,
        caller: str,
        position_id: int,
        debt_to_cover: int,
        receive_receipt_token: bool = False,
        permit: Permit | None = None,
    ) -> tuple[int, int]:
        """Liquidate an unhealthy position.

        Returns ``(liquidated_collateral, debt_covered)``. The seized
        collateral (underlying or receipt token) and any unused part of
        ``debt_to_cover`` are sent back to the liquidator.
        """
        if debt_to_cover <= 0:
            raise InvalidAmount("debt_to_cover", debt_to_cover)
        position = self._book.get(position_id)
        if position.owner.lower() == caller.lower():
            raise SelfLiquidation(f"Owner cannot liquidate position {position_id}")
        if not position.active:
            raise NotActive(position_id)

        async with self._locks.hold(*self._keys(position_id)):
            if not position.active:
                raise NotActive(position_id)

            risk = await self._risk()
            if not risk.is_liquidatable:
                raise PositionHealthy(position_id, risk.health_factor)

            seized_token = position.collateral_asset
            if receive_receipt_token:
                seized_token = await self._pool.get_receipt_token_address(
                    position.collateral_asset
                )
            balance_before = await self._tokens.balance_of(seized_token, self._account)

            await self._authorizer.pull(
                position.borrow_asset, caller, self._account, debt_to_cover, permit
            )
            try:
                result = await self._pool.liquidate(
                    position.collateral_asset, position.borrow_asset, self._account,
                    debt_to_cover, receive_receipt_token,
                )
            except PoolRejected:
                await self._tokens.transfer(position.borrow_asset, caller, debt_to_cover)
                raise

            covered = min(result.debt_covered, debt_to_cover)
            seized = result.liquidated_collateral
            estimated = seized is None
            if seized is None:
                balance_after = await self._tokens.balance_of(seized_token, self._account)
                seized = saturating_sub(balance_after, balance_before)
                logger.warning(
                    "Pool did not report seized collateral for position %d; "
                    "using balance change %d (estimate)",
                    position_id, seized,
                )

            if covered < debt_to_cover:
                await self._tokens.transfer(
                    position.borrow_asset, caller, debt_to_cover - covered
                )
            if seized > 0:
                await self._tokens.transfer(seized_token, caller, seized)

            position.borrow_amount = saturating_sub(position.borrow_amount, covered)
            position.collateral_amount = saturating_sub(position.collateral_amount, seized)
            closed = position.borrow_amount == 0 or position.collateral_amount == 0
            if closed:
                position.deactivate()
            else:
                position.mark_wound_down()

        logger.info(
            "Position %d liquidated by %s: %d debt covered, %d collateral seized%s",
            position_id, caller, covered, seized, " (closed)" if closed else "",
        )
        await self._events.publish(
            PositionLiquidated(
                position_id, position.owner, caller, covered, seized,
                receive_receipt_token, estimated=estimated, closed=closed,
            )
        )
        return seized, covered

    async def admin_close_position(
        self, caller: str, position_id: int, emergency: bool = False
    ) -> int:
        """Close a position on the owner's behalf using the service's own funds.

        Normal mode keeps the health gate and refuses when the pooled
        account cannot cover the debt. Emergency mode repays and withdraws
        whatever it can and deactivates the position regardless.
        """
        if not self._admin or caller.lower() != self._admin.lower():
            raise NotAdmin(f"{caller} is not the administrator")
        position = self._book.get(position_id)
        if not position.active:
            raise NotActive(position_id)

        async with self._locks.hold(*self._keys(position_id)):
            if not position.active:
                raise NotActive(position_id)
            if emergency:
                repaid, returned = await self._emergency_close(position)
            else:
                repaid, returned = await self._admin_close(position)

        await self._events.publish(
            PositionClosed(
                position_id, position.owner, returned, repaid,
                admin=True, emergency=emergency,
            )
        )
        return returned

    async def _admin_close(self, position: Position) -> tuple[int, int]:
        await self._require_healthy("pre")

        repaid = 0
        debt = position.borrow_amount
        if debt > 0:
            balance = await self._tokens.balance_of(position.borrow_asset, self._account)
            if balance < debt:
                raise InsufficientBalance(position.borrow_asset, debt, balance)
            repaid = await self._pool.repay(
                position.borrow_asset, debt, position.rate_mode, self._account
            )
            position.borrow_amount = saturating_sub(position.borrow_amount, repaid)
            position.mark_wound_down()

        returned = await self._return_collateral(position, position.owner)
        position.close()
        logger.info(
            "Position %d closed by admin: %d debt repaid, %d collateral to %s",
            position.id, repaid, returned, position.owner,
        )
        return repaid, returned

    async def _emergency_close(self, position: Position) -> tuple[int, int]:
        logger.warning(
            "EMERGENCY close of position %d: debt %d, collateral %d",
            position.id, position.borrow_amount, position.collateral_amount,
        )

        repaid = 0
        if position.borrow_amount > 0:
            try:
                balance = await self._tokens.balance_of(
                    position.borrow_asset, self._account
                )
                amount = min(balance, position.borrow_amount)
                if amount > 0:
                    repaid = await self._pool.repay(
                        position.borrow_asset, amount, position.rate_mode, self._account
                    )
            except PositionError as e:
                logger.error("Emergency repay for position %d failed: %s", position.id, e)

        returned = 0
        if position.collateral_amount > 0:
            try:
                returned = await self._pool.withdraw(
                    position.collateral_asset, position.collateral_amount, position.owner
                )
            except PositionError as e:
                logger.error(
                    "Emergency withdraw for position %d failed: %s", position.id, e
                )

        position.close()
        logger.warning(
            "EMERGENCY close of position %d done: %d repaid, %d collateral released",
            position.id, repaid, returned,
        )
        return repaid, returned
