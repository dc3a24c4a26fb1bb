"""Application wiring — builds the chain client, facades and ledgers from config."""
from __future__ import annotations

import logging

from .auth.permit import PermitAuthorizer
from .chains.evm import Erc20Gateway, EvmClient
from .config import AppConfig
from .events import EventBus
from .ledger.supply import SupplyLedger
from .locks import KeyedLock
from .models import AccountRisk
from .protocols.aave import AaveV3Pool
from .services import queries
from .services.orchestrator import PositionOrchestrator

logger = logging.getLogger(__name__)


class PositionManager:
    """Owns one pooled account and every ledger attached to it."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

        self.client = EvmClient(
            config.chain,
            private_key=config.account.private_key,
            address=config.account.address,
        )
        self.tokens = Erc20Gateway(self.client, config.chain.chain_id, config.tokens)
        self.pool = AaveV3Pool(self.client, self.tokens, config.pool.address)

        self.events = EventBus()
        locks = KeyedLock()
        authorizer = PermitAuthorizer(self.tokens)
        account = self.client.address

        self.orchestrator = PositionOrchestrator(
            self.pool,
            self.tokens,
            account,
            admin=config.account.admin,
            authorizer=authorizer,
            events=self.events,
            locks=locks,
            referral_code=config.pool.referral_code,
        )
        self.supplies = SupplyLedger(
            self.pool,
            self.tokens,
            account,
            authorizer=authorizer,
            events=self.events,
            locks=locks,
            referral_code=config.pool.referral_code,
        )
        logger.info("Position manager ready for account %s", account)

    @property
    def account(self) -> str:
        return self.orchestrator.account

    async def account_risk(self, account: str | None = None) -> AccountRisk:
        return await self.pool.get_account_risk(account or self.account)

    async def receipt_token(self, token: str) -> str:
        return await self.pool.get_receipt_token_address(self._config.token_address(token))

    async def balance(self, token: str, account: str | None = None) -> int:
        return await self.tokens.balance_of(
            self._config.token_address(token), account or self.account
        )

    def owner_totals(self, owner: str) -> queries.OwnerTotals:
        return queries.owner_totals(self.orchestrator.book, self.supplies, owner)
