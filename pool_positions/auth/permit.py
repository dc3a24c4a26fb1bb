"""Signed delegation (EIP-2612 permit) → immediate token allowance."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from eth_account import Account
from eth_account.messages import encode_typed_data

from ..errors import (
    AuthorizationMismatch,
    AuthorizationReplayed,
    ExpiredAuthorization,
    InvalidSignature,
)
from ..interfaces.token import TokenGateway
from ..models import Permit

logger = logging.getLogger(__name__)

_DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)

PERMIT_TYPE = [
    {"name": "owner", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


def permit_typed_data(
    domain: dict[str, Any],
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
) -> dict[str, Any]:
    """Build the EIP-712 ``Permit`` message for ``domain``."""
    domain_type = [
        {"name": name, "type": type_}
        for name, type_ in _DOMAIN_FIELDS
        if name in domain
    ]
    return {
        "types": {"EIP712Domain": domain_type, "Permit": PERMIT_TYPE},
        "primaryType": "Permit",
        "domain": domain,
        "message": {
            "owner": owner,
            "spender": spender,
            "value": value,
            "nonce": nonce,
            "deadline": deadline,
        },
    }


def recover_permit_signer(domain: dict[str, Any], permit: Permit) -> str:
    typed = permit_typed_data(
        domain, permit.owner, permit.spender, permit.value, permit.nonce,
        permit.deadline,
    )
    return Account.recover_message(
        encode_typed_data(full_message=typed), signature=bytes(permit.signature)
    )


def check_covers(
    permit: Permit, asset: str, owner: str, spender: str, amount: int
) -> None:
    """Raise ``AuthorizationMismatch`` unless ``permit`` covers the transfer."""
    if permit.asset.lower() != asset.lower():
        raise AuthorizationMismatch(f"Permit is for {permit.asset}, not {asset}")
    if permit.owner.lower() != owner.lower():
        raise AuthorizationMismatch(f"Permit owner {permit.owner} is not {owner}")
    if permit.spender.lower() != spender.lower():
        raise AuthorizationMismatch(f"Permit spender {permit.spender} is not {spender}")
    if permit.value < amount:
        raise AuthorizationMismatch(
            f"Permit value {permit.value} does not cover {amount}"
        )


class PermitAuthorizer:
    """Verify a permit and submit it to the token.

    A consumed ``(asset, owner, nonce)`` is remembered; submitting it again
    fails with ``AuthorizationReplayed``.
    """

    def __init__(
        self,
        tokens: TokenGateway,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tokens = tokens
        self._clock = clock
        self._consumed: set[tuple[str, str, int]] = set()

    async def resolve(self, permit: Permit) -> None:
        if self._clock() > permit.deadline:
            raise ExpiredAuthorization(
                f"Permit for {permit.owner} expired at {permit.deadline}"
            )

        key = (permit.asset.lower(), permit.owner.lower(), permit.nonce)
        if key in self._consumed:
            raise AuthorizationReplayed(
                f"Permit nonce {permit.nonce} for {permit.owner} already used"
            )

        try:
            v, r, s = permit.split_signature()
        except ValueError as e:
            raise InvalidSignature(str(e)) from e

        domain = await self._tokens.permit_domain(permit.asset)
        try:
            signer = recover_permit_signer(domain, permit)
        except Exception as e:
            raise InvalidSignature(f"Cannot recover permit signer: {e}") from e
        if signer.lower() != permit.owner.lower():
            raise InvalidSignature(
                f"Permit signed by {signer}, expected {permit.owner}"
            )

        current = await self._tokens.nonces(permit.asset, permit.owner)
        if current > permit.nonce:
            self._consumed.add(key)
            raise AuthorizationReplayed(
                f"Permit nonce {permit.nonce} already consumed (token nonce {current})"
            )
        if current < permit.nonce:
            raise InvalidSignature(
                f"Permit nonce {permit.nonce} is ahead of token nonce {current}"
            )

        await self._tokens.permit(
            permit.asset, permit.owner, permit.spender, permit.value,
            permit.deadline, v, r, s,
        )
        self._consumed.add(key)
        logger.info(
            "Permit accepted: %s allows %s to spend %d of %s",
            permit.owner, permit.spender, permit.value, permit.asset,
        )

    async def pull(
        self,
        asset: str,
        owner: str,
        to: str,
        amount: int,
        permit: Permit | None = None,
    ) -> None:
        """Move ``amount`` of ``asset`` from ``owner`` to ``to``.

        With a permit the allowance is granted first; without one the owner
        must have approved ``to`` beforehand.
        """
        if permit is not None:
            check_covers(permit, asset, owner, to, amount)
            await self.resolve(permit)
        await self._tokens.transfer_from(asset, owner, to, amount)
