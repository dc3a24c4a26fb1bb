"""Read-only projections over the position ledgers."""
from __future__ import annotations

from dataclasses import dataclass, field

from ..ledger.book import PositionBook
from ..ledger.supply import SupplyLedger
from ..models import Position, SupplyPosition


@dataclass(frozen=True)
class OwnerTotals:
    """Per-asset sums over an owner's active positions."""

    collateral: dict[str, int] = field(default_factory=dict)
    borrowed: dict[str, int] = field(default_factory=dict)
    supplied: dict[str, int] = field(default_factory=dict)


def position_ids_of(book: PositionBook, owner: str) -> list[int]:
    return book.ids_of(owner)


def positions_of(book: PositionBook, owner: str) -> list[Position]:
    return [book.get(i) for i in book.ids_of(owner)]


def active_positions_of(book: PositionBook, owner: str) -> list[Position]:
    return [p for p in positions_of(book, owner) if p.active]


def positions_with_details(
    book: PositionBook, owner: str
) -> list[tuple[int, Position]]:
    """Pair each of the owner's position ids with its record."""
    return [(p.id, p) for p in positions_of(book, owner)]


def active_position_count(book: PositionBook) -> int:
    return sum(1 for p in book if p.active)


def supply_positions_of(ledger: SupplyLedger, owner: str) -> list[SupplyPosition]:
    return ledger.supply_positions_of(owner)


def active_supply_positions_of(
    ledger: SupplyLedger, owner: str
) -> list[SupplyPosition]:
    return [p for p in ledger.supply_positions_of(owner) if p.active]


def total_supplied(ledger: SupplyLedger, asset: str) -> int:
    return ledger.total_supplied(asset)


def _accumulate(totals: dict[str, int], asset: str, amount: int) -> None:
    if amount:
        totals[asset] = totals.get(asset, 0) + amount


def owner_totals(
    book: PositionBook, ledger: SupplyLedger | None, owner: str
) -> OwnerTotals:
    collateral: dict[str, int] = {}
    borrowed: dict[str, int] = {}
    supplied: dict[str, int] = {}

    for position in active_positions_of(book, owner):
        _accumulate(collateral, position.collateral_asset, position.collateral_amount)
        _accumulate(borrowed, position.borrow_asset, position.borrow_amount)

    if ledger is not None:
        for supply in active_supply_positions_of(ledger, owner):
            _accumulate(supplied, supply.asset, supply.amount)

    return OwnerTotals(collateral=collateral, borrowed=borrowed, supplied=supplied)
