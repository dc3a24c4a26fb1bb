"""Exception hierarchy for the position layer.

Validation and authorization errors are raised before any external call.
Pool and token rejections are raised by the facades when the chain reverts a
call. Transport failures surface as ``ChainError`` subclasses.
"""
from __future__ import annotations


class PositionError(Exception):
    """Base class for every error raised by the position layer."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(PositionError):
    """Input rejected before any external call."""


class InvalidAmount(ValidationError):
    def __init__(self, field_name: str, value: int) -> None:
        super().__init__(f"Invalid {field_name}: {value}")
        self.field_name = field_name
        self.value = value


class InvalidRateMode(ValidationError):
    pass


class UnknownPosition(ValidationError):
    def __init__(self, position_id: int) -> None:
        super().__init__(f"Unknown position {position_id}")
        self.position_id = position_id


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(PositionError):
    """Caller is not allowed to perform the operation."""


class NotOwner(AuthorizationError):
    def __init__(self, position_id: int, caller: str) -> None:
        super().__init__(f"{caller} is not the owner of position {position_id}")
        self.position_id = position_id
        self.caller = caller


class SelfLiquidation(AuthorizationError):
    pass


class NotAdmin(AuthorizationError):
    pass


class ExpiredAuthorization(AuthorizationError):
    pass


class InvalidSignature(AuthorizationError):
    pass


class AuthorizationReplayed(AuthorizationError):
    pass


class AuthorizationMismatch(AuthorizationError):
    """Permit does not cover the transfer it was submitted for."""


# ---------------------------------------------------------------------------
# Position state
# ---------------------------------------------------------------------------


class NotActive(PositionError):
    def __init__(self, position_id: int) -> None:
        super().__init__(f"Position {position_id} is not active")
        self.position_id = position_id


# ---------------------------------------------------------------------------
# Pool / token rejections
# ---------------------------------------------------------------------------


class PoolRejected(PositionError):
    """The lending pool refused an operation."""

    def __init__(self, operation: str, reason: str = "") -> None:
        message = f"Pool rejected {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation
        self.reason = reason


class BorrowFailed(PositionError):
    """Borrow rejected at the requested and at the reduced amount.

    ``position_id`` is set when collateral was already supplied for a new
    position; that collateral stays attributed to the position.
    """

    def __init__(self, requested: int, position_id: int | None = None) -> None:
        super().__init__(f"Borrow of {requested} failed after fallback")
        self.requested = requested
        self.position_id = position_id


class InsufficientBorrowCapacity(PositionError):
    pass


class TokenRejected(PositionError):
    """The token contract refused a transfer, approval or permit."""

    def __init__(self, asset: str, operation: str, reason: str = "") -> None:
        message = f"Token {asset} rejected {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.asset = asset
        self.operation = operation


class InsufficientBalance(PositionError):
    def __init__(self, asset: str, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient {asset} balance: required {required}, available {available}"
        )
        self.asset = asset
        self.required = required
        self.available = available


# ---------------------------------------------------------------------------
# Solvency
# ---------------------------------------------------------------------------


class SolvencyViolation(PositionError):
    """Pool-reported health factor does not satisfy the solvency invariant.

    ``stage`` is ``"pre"`` when the check failed before any pool call and
    ``"post"`` when it failed after the pool call (a compensating action has
    already been taken by then).
    """

    def __init__(self, health_factor: int, stage: str) -> None:
        super().__init__(
            f"Health factor {health_factor / 10**18:.4f} fails solvency check ({stage})"
        )
        self.health_factor = health_factor
        self.stage = stage


class PositionHealthy(PositionError):
    def __init__(self, position_id: int, health_factor: int) -> None:
        super().__init__(
            f"Position {position_id} is healthy "
            f"(health factor {health_factor / 10**18:.4f})"
        )
        self.position_id = position_id
        self.health_factor = health_factor


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class ChainError(PositionError):
    """Failure talking to the chain."""


class RpcError(ChainError):
    pass


class TransactionReverted(ChainError):
    def __init__(self, reason: str, tx_hash: str = "") -> None:
        super().__init__(f"Transaction reverted: {reason}")
        self.reason = reason
        self.tx_hash = tx_hash
