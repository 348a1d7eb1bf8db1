#!/usr/bin/env python3
"""
Create Trust Line to Token Issuer
Allows a wallet to receive and hold RLUSD
"""

import asyncio
import sys
from getpass import getpass

from rlusd_toolkit.config import DEFAULT_TRUST_LIMIT, Settings, configure_logging
from rlusd_toolkit.exceptions import RLUSDError
from rlusd_toolkit.wallets import wallet_from_seed
from rlusd_toolkit.xrpl_utils import ensure_trustline, ledger_connection, resolve_account_status


async def run(settings: Settings) -> int:
    print("=" * 60)
    print("CREATE TRUST LINE TO TOKEN ISSUER")
    print("=" * 60)
    print(f"Network: {settings.network.upper()}")
    print(f"Token:   {settings.currency_code}")
    print(f"Issuer:  {settings.issuer}")
    print()

    print("WALLET")
    print("-" * 60)
    try:
        wallet = wallet_from_seed(getpass("Seed (starts with 's'): "))
    except RLUSDError as e:
        print(f"❌ {e}")
        return 1

    async with ledger_connection(settings.endpoints) as client:
        status = await resolve_account_status(client, wallet.address, settings.issuer, settings.ledger_currency)
        print(f"✓ Wallet loaded: {wallet.address}")
        print(f"  XRP Balance: {status.balance}")

        if not status.exists:
            print("❌ Account not activated. Send at least 10 XRP to it first.")
            return 1

        if status.trustline.has_trustline:
            print(f"\n⚠️  Trust line already exists for {settings.currency_code}!")
            print(f"  Limit:   {status.trustline.limit}")
            print(f"  Balance: {status.trustline.balance}")
            return 0

        print("\nTRUST LINE LIMIT")
        print("-" * 60)
        print(f"How many {settings.currency_code} do you want to be able to hold?")
        limit = input(f"Limit (default: {DEFAULT_TRUST_LIMIT}): ").strip() or DEFAULT_TRUST_LIMIT

        print("\n" + "=" * 60)
        print("TRANSACTION SUMMARY")
        print("=" * 60)
        print(f"Your address:  {wallet.address}")
        print(f"Token:         {settings.currency_code}")
        print(f"Issuer:        {settings.issuer}")
        print(f"Trust limit:   {limit}")
        print()

        if input("Create trust line? (y/N): ").strip().lower() != 'y':
            print("Cancelled.")
            return 0

        print("\nSubmitting to XRPL...")
        try:
            result = await ensure_trustline(client, wallet, settings.issuer, settings.ledger_currency, limit)
        except RLUSDError as e:
            print(f"❌ Transaction failed: {e}")
            return 1

    print("\n✓ Trust line created successfully!")
    print(f"  Hash:  {result.tx_hash}")
    print(f"  Limit: {result.limit} {settings.currency_code}")
    print(f"\n🔗 View on explorer:")
    print(f"  {settings.tx_explorer_url(result.tx_hash)}")
    return 0


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        code = asyncio.run(run(settings))
    except RLUSDError as e:
        print(f"\n❌ Error: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
