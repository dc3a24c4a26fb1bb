"""EVM JSON-RPC client with endpoint fallback and local transaction signing."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any

import aiohttp
import certifi
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

from ...config import ChainConfig
from ...errors import RpcError, TransactionReverted
from .abi import hex_to_bytes

logger = logging.getLogger(__name__)

# JSON-RPC error code used by geth-style nodes for execution reverts.
_EXECUTION_ERROR_CODE = 3


def _is_revert(error: dict[str, Any]) -> bool:
    message = str(error.get("message", "")).lower()
    return error.get("code") == _EXECUTION_ERROR_CODE or "revert" in message


class EvmClient:
    """EVM RPC client with automatic endpoint fallback.

    Reads go through ``call``; writes are signed locally with the configured
    key and sent as raw transactions, then awaited until mined.
    """

    def __init__(
        self,
        config: ChainConfig,
        private_key: str = "",
        address: str = "",
    ) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.receipt_timeout = config.receipt_timeout
        self.poll_interval = config.poll_interval
        self.chain_id = config.chain_id
        self.current_rpc_index = 0

        self._signer = Account.from_key(private_key) if private_key else None
        if self._signer is not None:
            self._address = self._signer.address
            if address and address.lower() != self._address.lower():
                raise ValueError("Configured address does not match the signing key")
        else:
            self._address = to_checksum_address(address) if address else ""

        # One in-flight nonce allocation at a time.
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._address

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        Execution reverts are raised immediately; every other failure moves
        on to the next endpoint.
        """
        if not self.endpoints:
            raise RpcError("No RPC endpoints configured")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if "error" in result:
                error = result["error"]
                if _is_revert(error):
                    raise TransactionReverted(str(error.get("message", error)))
                last_error = RpcError(f"RPC Error: {error}")
                logger.warning("RPC endpoint %s returned error: %s", rpc_url, error)
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            return result.get("result")

        raise RpcError(f"All RPC endpoints failed. Last error: {last_error}")

    async def call(self, to: str, data: str) -> bytes:
        """Execute a read-only ``eth_call`` against the latest block."""
        params: dict[str, Any] = {"to": to, "data": data}
        if self._address:
            params["from"] = self._address
        result = await self.rpc_call("eth_call", [params, "latest"])
        return hex_to_bytes(result or "0x")

    def sign_typed_data(self, typed_data: dict[str, Any]) -> bytes:
        """Sign an EIP-712 message with the configured key (65-byte signature)."""
        if self._signer is None:
            raise RpcError("No signing key configured")
        signed = self._signer.sign_message(encode_typed_data(full_message=typed_data))
        return bytes(signed.signature)

    async def send_transaction(self, to: str, data: str) -> dict[str, Any]:
        """Sign, broadcast and wait for a transaction; return its receipt."""
        if self._signer is None:
            raise RpcError("No signing key configured")

        async with self._send_lock:
            nonce = int(
                await self.rpc_call(
                    "eth_getTransactionCount", [self._address, "pending"]
                ),
                16,
            )
            estimate = await self.rpc_call(
                "eth_estimateGas", [{"from": self._address, "to": to, "data": data}]
            )
            gas_price = await self.rpc_call("eth_gasPrice", [])

            tx = {
                "to": to_checksum_address(to),
                "data": data,
                "value": 0,
                "nonce": nonce,
                "chainId": self.chain_id,
                "gas": int(estimate, 16) * 12 // 10,
                "gasPrice": int(gas_price, 16),
            }
            signed = self._signer.sign_transaction(tx)
            tx_hash = await self.rpc_call(
                "eth_sendRawTransaction", ["0x" + bytes(signed.raw_transaction).hex()]
            )
            logger.debug("Sent transaction %s (nonce %d)", tx_hash, nonce)

        receipt = await self.wait_for_receipt(tx_hash)
        if int(receipt.get("status", "0x1"), 16) != 1:
            raise TransactionReverted("status 0", tx_hash=tx_hash)
        return receipt

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """Poll until the transaction is mined or ``receipt_timeout`` elapses."""
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise RpcError(f"Timed out waiting for receipt of {tx_hash}")
            await asyncio.sleep(self.poll_interval)
