"""Token gateway protocol — balance movement and approvals."""
from typing import Any, Protocol


class TokenGateway(Protocol):
    """Abstract interface for fungible token operations.

    Writes are sent from the service account; rejections raise
    ``TokenRejected``.
    """

    async def balance_of(self, asset: str, account: str) -> int: ...

    async def allowance(self, asset: str, owner: str, spender: str) -> int: ...

    async def transfer(self, asset: str, to: str, amount: int) -> None: ...

    async def transfer_from(
        self, asset: str, owner: str, to: str, amount: int
    ) -> None: ...

    async def approve(self, asset: str, spender: str, amount: int) -> None: ...

    async def nonces(self, asset: str, owner: str) -> int: ...

    async def permit_domain(self, asset: str) -> dict[str, Any]: ...

    async def permit(
        self, asset: str, owner: str, spender: str, value: int, deadline: int,
        v: int, r: bytes, s: bytes,
    ) -> None: ...
