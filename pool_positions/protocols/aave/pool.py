"""Aave V3 style lending pool facade over an EVM chain client."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ...auth.permit import permit_typed_data
from ...chains.evm import abi
from ...chains.evm.erc20 import Erc20Gateway
from ...errors import ChainError, PoolRejected, TransactionReverted
from ...interfaces.chain import ChainClient
from ...models import (
    REPAY_ALL,
    AccountRisk,
    LiquidationResult,
    Permit,
    RateMode,
)

logger = logging.getLogger(__name__)

WITHDRAW_EVENT = "Withdraw(address,address,address,uint256)"
REPAY_EVENT = "Repay(address,address,address,uint256,bool)"
LIQUIDATION_EVENT = (
    "LiquidationCall(address,address,address,uint256,uint256,address,bool)"
)

# getReserveData returns a fully static struct; aTokenAddress is word 8.
_RESERVE_DATA_TYPES = [
    "uint256", "uint128", "uint128", "uint128", "uint128", "uint128",
    "uint40", "uint16", "address", "address", "address", "address",
    "uint128", "uint128", "uint128",
]
_RECEIPT_TOKEN_INDEX = 8


class AaveV3Pool:
    """Lending pool facade for an Aave V3 compatible ``Pool`` contract.

    Writes are sent from the chain client's account. Amounts the pool
    actually applied are read back from the events in the receipt.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        tokens: Erc20Gateway,
        pool_address: str,
        *,
        permit_ttl: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = chain_client
        self._tokens = tokens
        self._address = pool_address
        self._permit_ttl = permit_ttl
        self._clock = clock
        self._receipt_tokens: dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._address

    async def _send(self, operation: str, signature: str, *args: Any) -> dict[str, Any]:
        try:
            return await self._client.send_transaction(
                self._address, abi.encode_call(signature, *args)
            )
        except TransactionReverted as e:
            raise PoolRejected(operation, e.reason) from e

    def _single_amount(
        self, receipt: dict[str, Any], event: str, types: list[str], operation: str
    ) -> int:
        logs = abi.find_logs(receipt, self._address, event)
        if not logs:
            raise ChainError(f"{operation}: no {event.split('(')[0]} event in receipt")
        return abi.decode_log_data(types, logs[0])[0]

    async def _self_permit(self, asset: str, value: int) -> Permit | None:
        """Sign a permit letting the pool spend ``value`` of ``asset``.

        ``None`` when the token is not configured for permits or the
        current allowance already covers ``value``.
        """
        if not self._tokens.supports_permit(asset):
            return None
        owner = self._client.address
        if await self._tokens.allowance(asset, owner, self._address) >= value:
            return None

        domain = await self._tokens.permit_domain(asset)
        nonce = await self._tokens.nonces(asset, owner)
        deadline = int(self._clock()) + self._permit_ttl
        signature = self._client.sign_typed_data(
            permit_typed_data(domain, owner, self._address, value, nonce, deadline)
        )
        return Permit(asset, owner, self._address, value, nonce, deadline, signature)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def supply(
        self, asset: str, amount: int, on_behalf_of: str, referral_code: int = 0
    ) -> None:
        permit = await self._self_permit(asset, amount)
        if permit is not None:
            await self.supply_with_permit(
                asset, amount, on_behalf_of, permit, referral_code
            )
            return
        await self._tokens.ensure_allowance(asset, self._address, amount)
        await self._send(
            "supply", "supply(address,uint256,address,uint16)",
            asset, amount, on_behalf_of, referral_code,
        )

    async def supply_with_permit(
        self, asset: str, amount: int, on_behalf_of: str, permit: Permit,
        referral_code: int = 0,
    ) -> None:
        v, r, s = permit.split_signature()
        await self._send(
            "supplyWithPermit",
            "supplyWithPermit(address,uint256,address,uint16,uint256,uint8,bytes32,bytes32)",
            asset, amount, on_behalf_of, referral_code, permit.deadline, v, r, s,
        )

    async def withdraw(self, asset: str, amount: int, to: str) -> int:
        receipt = await self._send(
            "withdraw", "withdraw(address,uint256,address)", asset, amount, to
        )
        return self._single_amount(receipt, WITHDRAW_EVENT, ["uint256"], "withdraw")

    async def borrow(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        referral_code: int = 0,
    ) -> None:
        await self._send(
            "borrow", "borrow(address,uint256,uint256,uint16,address)",
            asset, amount, int(rate_mode), referral_code, on_behalf_of,
        )

    async def repay(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str
    ) -> int:
        permit = await self._self_permit(asset, amount)
        if permit is not None:
            return await self.repay_with_permit(
                asset, amount, rate_mode, on_behalf_of, permit
            )

        allowance_needed = amount
        if amount == REPAY_ALL:
            allowance_needed = await self._tokens.balance_of(asset, self._client.address)
        await self._tokens.ensure_allowance(asset, self._address, allowance_needed)
        receipt = await self._send(
            "repay", "repay(address,uint256,uint256,address)",
            asset, amount, int(rate_mode), on_behalf_of,
        )
        return self._single_amount(receipt, REPAY_EVENT, ["uint256", "bool"], "repay")

    async def repay_with_permit(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        permit: Permit,
    ) -> int:
        v, r, s = permit.split_signature()
        receipt = await self._send(
            "repayWithPermit",
            "repayWithPermit(address,uint256,uint256,address,uint256,uint8,bytes32,bytes32)",
            asset, amount, int(rate_mode), on_behalf_of, permit.deadline, v, r, s,
        )
        return self._single_amount(receipt, REPAY_EVENT, ["uint256", "bool"], "repay")

    async def set_collateral_flag(self, asset: str, enabled: bool) -> None:
        await self._send(
            "setUserUseReserveAsCollateral",
            "setUserUseReserveAsCollateral(address,bool)",
            asset, enabled,
        )

    async def liquidate(
        self, collateral_asset: str, debt_asset: str, account: str,
        debt_to_cover: int, receive_receipt_token: bool,
    ) -> LiquidationResult:
        await self._tokens.ensure_allowance(debt_asset, self._address, debt_to_cover)
        receipt = await self._send(
            "liquidationCall",
            "liquidationCall(address,address,address,uint256,bool)",
            collateral_asset, debt_asset, account, debt_to_cover, receive_receipt_token,
        )
        logs = abi.find_logs(receipt, self._address, LIQUIDATION_EVENT)
        if not logs:
            logger.warning("No LiquidationCall event in receipt; amounts unreported")
            return LiquidationResult(debt_covered=debt_to_cover)
        covered, seized, _liquidator, _receive = abi.decode_log_data(
            ["uint256", "uint256", "address", "bool"], logs[0]
        )
        return LiquidationResult(debt_covered=covered, liquidated_collateral=seized)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account_risk(self, account: str) -> AccountRisk:
        data = await self._client.call(
            self._address, abi.encode_call("getUserAccountData(address)", account)
        )
        collateral, debt, available, threshold, ltv, health = abi.decode_result(
            ["uint256"] * 6, data
        )
        return AccountRisk(
            total_collateral_value=collateral,
            total_debt_value=debt,
            available_borrow_value=available,
            liquidation_threshold=threshold,
            loan_to_value=ltv,
            health_factor=health,
        )

    async def get_receipt_token_address(self, asset: str) -> str:
        """Look up the interest-bearing receipt token for ``asset`` (cached)."""
        key = asset.lower()
        if key in self._receipt_tokens:
            return self._receipt_tokens[key]

        data = await self._client.call(
            self._address, abi.encode_call("getReserveData(address)", asset)
        )
        reserve = abi.decode_result(_RESERVE_DATA_TYPES, data)
        receipt_token = reserve[_RECEIPT_TOKEN_INDEX]
        self._receipt_tokens[key] = receipt_token
        return receipt_token
