"""Shared test fixtures, in-memory pool/token fakes and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from pool_positions.config import (
    AccountConfig,
    AppConfig,
    ChainConfig,
    PoolConfig,
    TokenConfig,
)
from pool_positions.errors import PoolRejected, TokenRejected
from pool_positions.events import DomainEvent, EventBus
from pool_positions.ledger.supply import SupplyLedger
from pool_positions.locks import KeyedLock
from pool_positions.models import (
    REPAY_ALL,
    WAD,
    AccountRisk,
    LiquidationResult,
    Permit,
    RateMode,
)
from pool_positions.services.orchestrator import PositionOrchestrator

ACCOUNT = "0x" + "aa" * 20
ADMIN = "0x" + "ad" * 20
OWNER = "0x" + "01" * 20
OTHER = "0x" + "02" * 20
LIQUIDATOR = "0x" + "03" * 20
COLLATERAL = "0x" + "c0" * 20
DEBT = "0x" + "d0" * 20
POOL_ADDRESS = "0x" + "50" * 20


# ---------------------------------------------------------------------------
# Token fake
# ---------------------------------------------------------------------------


class FakeTokens:
    """ERC-20 balances and allowances kept in dicts.

    ``transfer`` moves funds out of ``account`` (the pooled account), like a
    real token call signed by that account.
    """

    def __init__(self, account: str) -> None:
        self.account = account
        self.balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.token_nonces: dict[tuple[str, str], int] = {}
        self.permits: list[tuple] = []
        self.transfers: list[tuple[str, str, str, int]] = []

    # -- test helpers ----------------------------------------------------

    def fund(self, asset: str, holder: str, amount: int, spender: str | None = None) -> None:
        key = (asset.lower(), holder.lower())
        self.balances[key] = self.balances.get(key, 0) + amount
        if spender is not None:
            akey = (asset.lower(), holder.lower(), spender.lower())
            self.allowances[akey] = self.allowances.get(akey, 0) + amount

    def balance(self, asset: str, holder: str) -> int:
        return self.balances.get((asset.lower(), holder.lower()), 0)

    def move(self, asset: str, frm: str, to: str, amount: int) -> None:
        available = self.balance(asset, frm)
        if available < amount:
            raise TokenRejected(asset, "transfer", "transfer amount exceeds balance")
        self.balances[(asset.lower(), frm.lower())] = available - amount
        key = (asset.lower(), to.lower())
        self.balances[key] = self.balances.get(key, 0) + amount

    # -- TokenGateway ----------------------------------------------------

    async def balance_of(self, asset: str, account: str) -> int:
        return self.balance(asset, account)

    async def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self.allowances.get((asset.lower(), owner.lower(), spender.lower()), 0)

    async def transfer(self, asset: str, to: str, amount: int) -> None:
        self.move(asset, self.account, to, amount)
        self.transfers.append((asset, self.account, to, amount))

    async def transfer_from(self, asset: str, owner: str, to: str, amount: int) -> None:
        key = (asset.lower(), owner.lower(), to.lower())
        allowed = self.allowances.get(key, 0)
        if allowed < amount:
            raise TokenRejected(asset, "transferFrom", "insufficient allowance")
        self.move(asset, owner, to, amount)
        self.allowances[key] = allowed - amount
        self.transfers.append((asset, owner, to, amount))

    async def approve(self, asset: str, spender: str, amount: int) -> None:
        self.allowances[(asset.lower(), self.account.lower(), spender.lower())] = amount

    async def nonces(self, asset: str, owner: str) -> int:
        return self.token_nonces.get((asset.lower(), owner.lower()), 0)

    async def permit_domain(self, asset: str) -> dict:
        return {
            "name": "Test Token",
            "version": "1",
            "chainId": 1,
            "verifyingContract": asset,
        }

    async def permit(
        self, asset: str, owner: str, spender: str, value: int, deadline: int,
        v: int, r: bytes, s: bytes,
    ) -> None:
        self.permits.append((asset, owner, spender, value, deadline, v))
        self.allowances[(asset.lower(), owner.lower(), spender.lower())] = value
        key = (asset.lower(), owner.lower())
        self.token_nonces[key] = self.token_nonces.get(key, 0) + 1


# ---------------------------------------------------------------------------
# Pool fake
# ---------------------------------------------------------------------------


class FakePool:
    """Lending pool holding supplies and debt for one account.

    ``health_factors`` is consumed one value per ``get_account_risk`` call;
    once empty, ``health_factor`` is reported.
    """

    def __init__(self, tokens: FakeTokens) -> None:
        self.tokens = tokens
        self.supplied: dict[str, int] = {}
        self.debt: dict[str, int] = {}
        self.collateral_flags: list[tuple[str, bool]] = []
        self.calls: list[str] = []

        self.health_factor = 2 * WAD
        self.health_factors: list[int] = []
        self.available_borrow = 10**24
        self.borrow_limit: int | None = None
        self.reject: set[str] = set()
        self.withdraw_cap: int | None = None
        self.repay_cap: int | None = None
        self.liquidation_seized = 0
        self.report_seized = True

    def _custody(self, asset: str) -> str:
        return f"pool:{asset.lower()}"

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.reject:
            raise PoolRejected(operation, "rejected by test")

    async def supply(
        self, asset: str, amount: int, on_behalf_of: str, referral_code: int = 0
    ) -> None:
        self._check("supply")
        self.tokens.move(asset, on_behalf_of, self._custody(asset), amount)
        self.supplied[asset.lower()] = self.supplied.get(asset.lower(), 0) + amount

    async def supply_with_permit(
        self, asset: str, amount: int, on_behalf_of: str, permit: Permit,
        referral_code: int = 0,
    ) -> None:
        await self.supply(asset, amount, on_behalf_of, referral_code)

    async def withdraw(self, asset: str, amount: int, to: str) -> int:
        self._check("withdraw")
        actual = min(amount, self.supplied.get(asset.lower(), 0))
        if self.withdraw_cap is not None:
            actual = min(actual, self.withdraw_cap)
        self.supplied[asset.lower()] = self.supplied.get(asset.lower(), 0) - actual
        self.tokens.move(asset, self._custody(asset), to, actual)
        return actual

    async def borrow(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        referral_code: int = 0,
    ) -> None:
        self.calls.append(f"borrow:{amount}")
        if "borrow" in self.reject or (
            self.borrow_limit is not None and amount > self.borrow_limit
        ):
            raise PoolRejected("borrow", "insufficient borrowing power")
        self.debt[asset.lower()] = self.debt.get(asset.lower(), 0) + amount
        self.tokens.fund(asset, on_behalf_of, amount)

    async def repay(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str
    ) -> int:
        self._check("repay")
        owed = self.debt.get(asset.lower(), 0)
        actual = owed if amount == REPAY_ALL else min(amount, owed)
        if self.repay_cap is not None:
            actual = min(actual, self.repay_cap)
        if self.tokens.balance(asset, on_behalf_of) < actual:
            raise PoolRejected("repay", "insufficient balance")
        self.tokens.move(asset, on_behalf_of, self._custody(asset), actual)
        self.debt[asset.lower()] = owed - actual
        return actual

    async def repay_with_permit(
        self, asset: str, amount: int, rate_mode: RateMode, on_behalf_of: str,
        permit: Permit,
    ) -> int:
        return await self.repay(asset, amount, rate_mode, on_behalf_of)

    async def set_collateral_flag(self, asset: str, enabled: bool) -> None:
        self._check("setUserUseReserveAsCollateral")
        self.collateral_flags.append((asset, enabled))

    async def get_account_risk(self, account: str) -> AccountRisk:
        self.calls.append("getUserAccountData")
        health = self.health_factors.pop(0) if self.health_factors else self.health_factor
        return AccountRisk(
            total_collateral_value=sum(self.supplied.values()),
            total_debt_value=sum(self.debt.values()),
            available_borrow_value=self.available_borrow,
            liquidation_threshold=8250,
            loan_to_value=8000,
            health_factor=health,
        )

    async def liquidate(
        self, collateral_asset: str, debt_asset: str, account: str,
        debt_to_cover: int, receive_receipt_token: bool,
    ) -> LiquidationResult:
        self._check("liquidationCall")
        owed = self.debt.get(debt_asset.lower(), 0)
        covered = min(debt_to_cover, owed)
        self.tokens.move(debt_asset, account, self._custody(debt_asset), covered)
        self.debt[debt_asset.lower()] = owed - covered

        seized = self.liquidation_seized
        self.supplied[collateral_asset.lower()] -= seized
        if receive_receipt_token:
            self.tokens.fund(await self.get_receipt_token_address(collateral_asset), account, seized)
            self.tokens.move(collateral_asset, self._custody(collateral_asset), "burned", seized)
        else:
            self.tokens.move(collateral_asset, self._custody(collateral_asset), account, seized)

        return LiquidationResult(
            debt_covered=covered,
            liquidated_collateral=seized if self.report_seized else None,
        )

    async def get_receipt_token_address(self, asset: str) -> str:
        return "0x" + "ee" * 20


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def tokens() -> FakeTokens:
    return FakeTokens(ACCOUNT)


@pytest.fixture()
def pool(tokens: FakeTokens) -> FakePool:
    return FakePool(tokens)


@pytest.fixture()
def events() -> list[DomainEvent]:
    return []


@pytest.fixture()
def bus(events: list[DomainEvent]) -> EventBus:
    bus = EventBus()

    async def record(event: DomainEvent) -> None:
        events.append(event)

    bus.subscribe(record)
    return bus


@pytest.fixture()
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture()
def orchestrator(
    pool: FakePool, tokens: FakeTokens, bus: EventBus, locks: KeyedLock
) -> PositionOrchestrator:
    return PositionOrchestrator(
        pool, tokens, ACCOUNT, admin=ADMIN, events=bus, locks=locks
    )


@pytest.fixture()
def supply_ledger(
    pool: FakePool, tokens: FakeTokens, bus: EventBus, locks: KeyedLock
) -> SupplyLedger:
    return SupplyLedger(pool, tokens, ACCOUNT, events=bus, locks=locks)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=1,
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        receipt_timeout=5,
        poll_interval=0.0,
    )


@pytest.fixture()
def sample_app_config(sample_chain_config: ChainConfig) -> AppConfig:
    return AppConfig(
        chain=sample_chain_config,
        account=AccountConfig(address=ACCOUNT, admin=ADMIN),
        pool=PoolConfig(address=POOL_ADDRESS),
        tokens={
            "COL": TokenConfig(address=COLLATERAL, decimals=18),
            "DEBT": TokenConfig(address=DEBT, decimals=6, permit_version="2"),
        },
    )


SAMPLE_YAML = textwrap.dedent(f"""\
    chain:
      chain_id: 1
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    account:
      address: "{ACCOUNT}"
      admin: "{ADMIN}"
    pool:
      address: "{POOL_ADDRESS}"
      referral_code: 7
    tokens:
      usdc:
        address: "{DEBT}"
        decimals: 6
        permit_version: "2"
        permit: true
      weth:
        address: "{COLLATERAL}"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
