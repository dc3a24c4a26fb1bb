"""EVM chain client and token gateway."""
from .client import EvmClient
from .erc20 import Erc20Gateway

__all__ = ["EvmClient", "Erc20Gateway"]
