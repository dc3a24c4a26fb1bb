"""In-memory storage for borrow positions with a per-owner index."""
from __future__ import annotations

from collections.abc import Iterator

from ..errors import UnknownPosition
from ..models import Position, RateMode


class PositionBook:
    """Owns position records and id allocation. Ids start at 1 and are never reused."""

    def __init__(self) -> None:
        self._positions: dict[int, Position] = {}
        self._by_owner: dict[str, list[int]] = {}
        self._next_id = 1

    def open(
        self,
        owner: str,
        collateral_asset: str,
        borrow_asset: str,
        rate_mode: RateMode,
    ) -> Position:
        position = Position(
            id=self._next_id,
            owner=owner,
            collateral_asset=collateral_asset,
            collateral_amount=0,
            borrow_asset=borrow_asset,
            borrow_amount=0,
            rate_mode=rate_mode,
        )
        self._next_id += 1
        self._positions[position.id] = position
        self._by_owner.setdefault(owner.lower(), []).append(position.id)
        return position

    def discard(self, position_id: int) -> None:
        """Drop a provisional record that never reached the pool."""
        position = self._positions.pop(position_id)
        self._by_owner[position.owner.lower()].remove(position_id)

    def get(self, position_id: int) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise UnknownPosition(position_id) from None

    def ids_of(self, owner: str) -> list[int]:
        return list(self._by_owner.get(owner.lower(), []))

    def debt_of_others(self, asset: str, position_id: int) -> int:
        """Debt in ``asset`` tracked for active positions other than ``position_id``."""
        return sum(
            p.borrow_amount
            for p in self._positions.values()
            if p.id != position_id
            and p.active
            and p.borrow_asset.lower() == asset.lower()
        )

    def __iter__(self) -> Iterator[Position]:
        return iter(self._positions.values())

    def __len__(self) -> int:
        return len(self._positions)
