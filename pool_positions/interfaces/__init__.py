"""Protocol interfaces for the position layer."""
from .chain import ChainClient
from .pool import LendingPool
from .token import TokenGateway

__all__ = ["ChainClient", "LendingPool", "TokenGateway"]
