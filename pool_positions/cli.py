"""Command-line interface for the pooled position account."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .app import PositionManager
from .config import load_config
from .logging_setup import configure_logging
from .models import AccountRisk


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="pool-positions",
        description="Leveraged and supply-only positions over a lending pool",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    risk_parser = sub.add_parser("risk", help="Show pool-reported account risk")
    risk_parser.add_argument(
        "account", nargs="?", default=None,
        help="Account address (default: the configured account)",
    )

    receipt_parser = sub.add_parser(
        "receipt-token", help="Show the receipt token address for an asset"
    )
    receipt_parser.add_argument("token", help="Token symbol or address")

    balance_parser = sub.add_parser("balance", help="Show a token balance")
    balance_parser.add_argument("token", help="Token symbol or address")
    balance_parser.add_argument(
        "account", nargs="?", default=None,
        help="Account address (default: the configured account)",
    )

    return parser


def format_risk(account: str, risk: AccountRisk) -> str:
    status = "healthy" if risk.is_healthy else "LIQUIDATABLE" if risk.is_liquidatable else "at threshold"
    return (
        f"Account:               {account}\n"
        f"Collateral value:      {risk.total_collateral_value}\n"
        f"Debt value:            {risk.total_debt_value}\n"
        f"Available to borrow:   {risk.available_borrow_value}\n"
        f"Liquidation threshold: {risk.liquidation_threshold / 100:.2f}%\n"
        f"LTV:                   {risk.loan_to_value / 100:.2f}%\n"
        f"Health factor:         {risk.health_factor_ratio:.4f} ({status})"
    )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    manager = PositionManager(config)

    if args.command == "risk":
        account = args.account or manager.account
        risk = await manager.account_risk(account)
        print(format_risk(account, risk))
    elif args.command == "receipt-token":
        print(await manager.receipt_token(args.token))
    elif args.command == "balance":
        print(await manager.balance(args.token, args.account))
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
