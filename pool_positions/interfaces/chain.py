"""Chain client protocol — blockchain RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for EVM RPC interactions."""

    @property
    def address(self) -> str: ...

    async def call(self, to: str, data: str) -> bytes: ...

    async def send_transaction(self, to: str, data: str) -> dict[str, Any]: ...

    def sign_typed_data(self, typed_data: dict[str, Any]) -> bytes: ...
