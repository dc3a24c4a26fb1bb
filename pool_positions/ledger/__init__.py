"""Local ledgers mirroring pool-held positions."""
from .book import PositionBook
from .supply import SupplyLedger

__all__ = ["PositionBook", "SupplyLedger"]
