"""ERC-20 token gateway over an EVM chain client."""
from __future__ import annotations

import logging
from typing import Any

from ...config import TokenConfig
from ...errors import TokenRejected, TransactionReverted
from ...interfaces.chain import ChainClient
from .abi import decode_result, encode_call

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1


class Erc20Gateway:
    """Token operations sent from the chain client's account."""

    def __init__(
        self,
        chain_client: ChainClient,
        chain_id: int,
        tokens: dict[str, TokenConfig] | None = None,
    ) -> None:
        self._client = chain_client
        self._chain_id = chain_id
        self._permit_versions = {
            t.address.lower(): t.permit_version for t in (tokens or {}).values()
        }
        self._permit_tokens = {
            t.address.lower() for t in (tokens or {}).values() if t.permit
        }

    def supports_permit(self, asset: str) -> bool:
        return asset.lower() in self._permit_tokens

    async def _read(self, asset: str, signature: str, types: list[str], *args: Any) -> tuple[Any, ...]:
        data = await self._client.call(asset, encode_call(signature, *args))
        return decode_result(types, data)

    async def _write(self, asset: str, operation: str, signature: str, *args: Any) -> None:
        try:
            await self._client.send_transaction(asset, encode_call(signature, *args))
        except TransactionReverted as e:
            raise TokenRejected(asset, operation, e.reason) from e

    async def balance_of(self, asset: str, account: str) -> int:
        (balance,) = await self._read(asset, "balanceOf(address)", ["uint256"], account)
        return balance

    async def allowance(self, asset: str, owner: str, spender: str) -> int:
        (value,) = await self._read(
            asset, "allowance(address,address)", ["uint256"], owner, spender
        )
        return value

    async def transfer(self, asset: str, to: str, amount: int) -> None:
        logger.debug("transfer %d of %s to %s", amount, asset, to)
        await self._write(asset, "transfer", "transfer(address,uint256)", to, amount)

    async def transfer_from(self, asset: str, owner: str, to: str, amount: int) -> None:
        logger.debug("transferFrom %d of %s from %s to %s", amount, asset, owner, to)
        await self._write(
            asset, "transferFrom", "transferFrom(address,address,uint256)",
            owner, to, amount,
        )

    async def approve(self, asset: str, spender: str, amount: int) -> None:
        await self._write(asset, "approve", "approve(address,uint256)", spender, amount)

    async def ensure_allowance(self, asset: str, spender: str, amount: int) -> None:
        """Approve ``spender`` for the max amount when the current allowance is short."""
        current = await self.allowance(asset, self._client.address, spender)
        if current < amount:
            logger.info("Approving %s to spend %s", spender, asset)
            await self.approve(asset, spender, MAX_UINT256)

    async def nonces(self, asset: str, owner: str) -> int:
        (nonce,) = await self._read(asset, "nonces(address)", ["uint256"], owner)
        return nonce

    async def permit_domain(self, asset: str) -> dict[str, Any]:
        (name,) = await self._read(asset, "name()", ["string"])
        return {
            "name": name,
            "version": self._permit_versions.get(asset.lower(), "1"),
            "chainId": self._chain_id,
            "verifyingContract": asset,
        }

    async def permit(
        self, asset: str, owner: str, spender: str, value: int, deadline: int,
        v: int, r: bytes, s: bytes,
    ) -> None:
        await self._write(
            asset, "permit",
            "permit(address,address,uint256,uint256,uint8,bytes32,bytes32)",
            owner, spender, value, deadline, v, r, s,
        )
