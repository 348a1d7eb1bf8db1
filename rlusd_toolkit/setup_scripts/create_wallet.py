#!/usr/bin/env python3
"""
XRPL Wallet Setup for RLUSD
Creates a wallet, waits for activation, sets up the RLUSD trustline

Usage:
    rlusd-wallet                  create a new wallet (interactive)
    rlusd-wallet check <address>  show account and trustline status
    rlusd-wallet quick [--save-plaintext] [--format json|txt]
                                  generate a wallet without prompts
    rlusd-wallet setup <address>  set up the trustline for an existing wallet
"""

import argparse
import asyncio
import sys
from getpass import getpass

from xrpl.asyncio.clients import AsyncWebsocketClient

from rlusd_toolkit.config import DEFAULT_TRUST_LIMIT, Settings, configure_logging
from rlusd_toolkit.exceptions import RLUSDError, ValidationError
from rlusd_toolkit.wallets import (
    XRP_REQUIREMENTS,
    generate_wallet,
    save_wallet,
    wait_for_funding,
    wallet_details,
    wallet_for_address,
)
from rlusd_toolkit.xrpl_utils import (
    ensure_trustline,
    is_valid_address,
    ledger_connection,
    resolve_account_status,
)


def ask_yes(question: str) -> bool:
    return input(question).strip().lower() in ('y', 'yes')


def print_wallet(details: dict):
    print("=" * 60)
    print("🎉 NEW XRPL WALLET CREATED")
    print("=" * 60)
    print("\n⚠️  IMPORTANT: Save this information securely!")
    print("⚠️  Never share your seed or private key!\n")
    print("📋 Wallet Details:")
    print("-" * 40)
    print(f"Address:     {details['address']}")
    print(f"Public Key:  {details['public_key']}")
    print("\n🔑 Secret Information (KEEP SECURE):")
    print("-" * 40)
    print(f"Seed:        {details['seed']}")
    print(f"Private Key: {details['private_key']}")
    print("\n" + "=" * 60)


def print_attempt(attempt, status):
    if status.exists:
        print(f"   Attempt {attempt}... Account activated but only has {status.balance} XRP")
    else:
        print(f"   Attempt {attempt}... Account not yet activated")


async def check_account(settings: Settings, address: str) -> int:
    if not is_valid_address(address):
        print(f"❌ Invalid XRPL address: {address}")
        return 1

    print(f"\n🔍 Checking account: {address}\n")
    async with ledger_connection(settings.endpoints) as client:
        status = await resolve_account_status(client, address, settings.issuer, settings.ledger_currency)

    if not status.exists:
        print("❌ Account Status: NOT ACTIVATED")
        print(f"   Send at least {XRP_REQUIREMENTS['base_reserve']} XRP to activate this account")
        return 0

    print("✅ Account Status: ACTIVE")
    print(f"💰 XRP Balance: {status.balance} XRP")
    print(f"📊 Sequence: {status.sequence}")

    if status.trustline.has_trustline:
        print(f"\n✅ {settings.currency_code} Trustline: ACTIVE")
        print(f"💵 {settings.currency_code} Balance: {status.trustline.balance}")
        print(f"📈 Trustline Limit: {status.trustline.limit}")
    else:
        print(f"\n❌ {settings.currency_code} Trustline: NOT SET")
        print(f"   To receive {settings.currency_code}, you need to set up a trustline")
    return 0


async def create_wallet(settings: Settings) -> int:
    currency = settings.currency_code

    print(f"\n🚀 XRPL {settings.network.upper()} Wallet Creator\n")
    print("This tool will:")
    print("1. Generate a new XRPL wallet")
    print("2. Help you activate it with XRP")
    print(f"3. Set up the {currency} trustline")
    print("4. Optionally save the credentials to a file\n")

    if not ask_yes("Continue? (yes/no): "):
        print("Cancelled.")
        return 0

    print("🔐 Generating new XRPL wallet...\n")
    wallet = generate_wallet()
    details = wallet_details(wallet)
    print_wallet(details)

    if ask_yes("\nSave wallet to file? (yes/no): "):
        print("⚠️  The file will contain your seed and private key in CLEAR TEXT.")
        if ask_yes("Write secrets to disk anyway? (yes/no): "):
            path = save_wallet(wallet, settings.wallets_dir, network=settings.network,
                               issuer=settings.issuer, allow_plaintext=True)
            print(f"\n✓ Wallet saved to: {path}")
            print("  ⚠️  Keep this file secure and make backups!\n")

    print("\n💰 Account Activation Options:")
    print("1. I will fund the account myself")
    print("2. Someone else will fund the account")
    print("3. Skip activation for now\n")
    choice = input("Choose option (1-3): ").strip()

    if choice == '3':
        print(f"\n⚠️  Remember: Account needs at least {XRP_REQUIREMENTS['base_reserve']} XRP to be activated.")
        print(f"   Additional {XRP_REQUIREMENTS['owner_reserve']} XRP reserve required for the {currency} trustline.\n")
        return 0

    print("\n📋 Funding Instructions:")
    print(f"   Send at least {XRP_REQUIREMENTS['min_funding']} XRP to:")
    print(f"   {details['address']}\n")
    print(f"   - Minimum: {XRP_REQUIREMENTS['min_funding']} XRP (account + 1 trustline)")
    print(f"   - Safe:    {XRP_REQUIREMENTS['safe_operational']} XRP (with buffer for fees)\n")

    if not ask_yes("Wait for funding? (yes/no): "):
        return 0

    async with ledger_connection(settings.endpoints) as client:
        print("\n💰 Waiting for account funding... (Ctrl+C to stop)")
        status = await wait_for_funding(client, details['address'], on_attempt=print_attempt)
        print(f"✓ Account activated with {status.balance} XRP!\n")

        if not ask_yes(f"Set up {currency} trustline now? (yes/no): "):
            return 0

        limit = input(f"Trustline limit (press Enter for default {DEFAULT_TRUST_LIMIT}): ").strip() or DEFAULT_TRUST_LIMIT
        result = await ensure_trustline(client, wallet, settings.issuer, settings.ledger_currency, limit)

    if result.created:
        print(f"✓ {currency} trustline created successfully!")
        print(f"  Transaction: {result.tx_hash}")
        print(f"  Explorer: {settings.tx_explorer_url(result.tx_hash)}\n")
    else:
        print(f"✓ {currency} trustline already exists (limit {result.limit})")
    return 0


def quick_wallet(settings: Settings, save_plaintext: bool = False, fmt: str = 'json') -> int:
    """Non-interactive: generate, show, optionally save, print next steps"""
    print("🚀 Quick Wallet Generation\n")
    wallet = generate_wallet()
    details = wallet_details(wallet)
    print_wallet(details)

    if save_plaintext:
        path = save_wallet(wallet, settings.wallets_dir, fmt=fmt, network=settings.network,
                           issuer=settings.issuer, allow_plaintext=True)
        print(f"\n✓ Wallet saved to: {path}\n")
    else:
        print("\n⚠️  Wallet NOT saved. Copy the seed now; --save-plaintext writes it to a file.\n")

    print("📋 Next Steps:")
    print(f"1. Fund the account with at least {XRP_REQUIREMENTS['min_funding']} XRP")
    print(f"2. Run this command to set up the {settings.currency_code} trustline:")
    print(f"   rlusd-wallet setup {details['address']}\n")
    print("🔗 View on Explorer:")
    print(f"   {settings.explorer_url}/accounts/{details['address']}\n")
    return 0


async def setup_existing_wallet(settings: Settings, address: str, read_seed=getpass,
                                client_factory=AsyncWebsocketClient) -> int:
    """Set up the trustline for an already funded wallet"""
    currency = settings.currency_code
    if not is_valid_address(address):
        print(f"❌ Invalid XRPL address: {address}")
        return 1

    print(f"\n🔧 Setting up {currency} trustline for {address}\n")
    async with ledger_connection(settings.endpoints, client_factory) as client:
        status = await resolve_account_status(client, address)
        if not status.exists:
            print("❌ Account not found or not activated.")
            print(f"   Please fund the account with at least {XRP_REQUIREMENTS['base_reserve']} XRP first.\n")
            return 1
        print(f"✓ Account found with {status.balance} XRP\n")

        try:
            wallet = wallet_for_address(read_seed("Enter wallet seed (starts with 's'): "), address)
        except ValidationError as e:
            print(f"❌ Error: {e}")
            return 1

        result = await ensure_trustline(client, wallet, settings.issuer, settings.ledger_currency)

    if result.created:
        print(f"✓ {currency} trustline created successfully!")
        print(f"  Transaction: {result.tx_hash}")
        print(f"  Explorer: {settings.tx_explorer_url(result.tx_hash)}\n")
    else:
        print(f"✓ {currency} trustline already exists (limit {result.limit})")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="XRPL wallet creator and account checker")
    sub = parser.add_subparsers(dest='command')
    check = sub.add_parser('check', help='check account activation and trustline status')
    check.add_argument('address')
    quick = sub.add_parser('quick', help='generate a wallet without prompts')
    quick.add_argument('--save-plaintext', action='store_true',
                       help='write seed and private key to a file in WALLETS_DIR')
    quick.add_argument('--format', choices=['json', 'txt'], default='json')
    setup = sub.add_parser('setup', help='set up the trustline for an existing funded wallet')
    setup.add_argument('address')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    try:
        if args.command == 'check':
            code = asyncio.run(check_account(settings, args.address))
        elif args.command == 'quick':
            code = quick_wallet(settings, save_plaintext=args.save_plaintext, fmt=args.format)
        elif args.command == 'setup':
            code = asyncio.run(setup_existing_wallet(settings, args.address))
        else:
            code = asyncio.run(create_wallet(settings))
    except RLUSDError as e:
        print(f"\n❌ Fatal error: {e}\n")
        code = 1
    except KeyboardInterrupt:
        print("\nStopped.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
