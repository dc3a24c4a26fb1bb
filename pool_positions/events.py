"""Domain events — one per state transition — and the bus that publishes them."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable

from .models import RateMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    position_id: int
    owner: str

    @property
    def name(self) -> str:
        return type(self).__name__


# ---------------------------------------------------------------------------
# Borrow positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionCreated(DomainEvent):
    collateral_asset: str
    collateral_amount: int
    borrow_asset: str
    borrow_amount: int
    requested_borrow_amount: int
    rate_mode: RateMode


@dataclass(frozen=True)
class CollateralAdded(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class CollateralWithdrawn(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class DebtIncreased(DomainEvent):
    asset: str
    amount: int
    requested_amount: int


@dataclass(frozen=True)
class DebtRepaid(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class PositionClosed(DomainEvent):
    collateral_returned: int
    debt_repaid: int
    admin: bool = False
    emergency: bool = False


@dataclass(frozen=True)
class PositionLiquidated(DomainEvent):
    liquidator: str
    debt_covered: int
    liquidated_collateral: int
    receive_receipt_token: bool
    estimated: bool = False
    closed: bool = False


# ---------------------------------------------------------------------------
# Supply positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SupplyPositionCreated(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class SupplyPositionIncreased(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class SupplyPositionWithdrawn(DomainEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class SupplyPositionClosed(DomainEvent):
    asset: str
    amount: int


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """Fan-out of domain events to async handlers.

    Handler failures are logged and never reach the operation that emitted
    the event.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: DomainEvent) -> None:
        logger.info("%s %s", event.name, asdict(event))
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error("Event handler failed for %s: %s", event.name, e)
