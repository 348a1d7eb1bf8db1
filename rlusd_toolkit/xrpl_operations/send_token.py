#!/usr/bin/env python3
"""
Send RLUSD between wallets
Manual token transfers with the library-level safety ceiling
"""

import asyncio
import sys
from getpass import getpass

from rlusd_toolkit.config import Settings, configure_logging
from rlusd_toolkit.exceptions import RLUSDError
from rlusd_toolkit.wallets import wallet_from_seed
from rlusd_toolkit.xrpl_utils import (
    is_valid_address,
    ledger_connection,
    parse_amount,
    parse_destination_tag,
    resolve_account_status,
    send_payment,
)


def print_final_balances(result, currency: str):
    balances = [("Sender", result.sender_balance), ("Recipient", result.destination_balance)]
    if all(balance is None for _, balance in balances):
        return
    print("\nFinal balances:")
    for label, balance in balances:
        shown = f"{balance} {currency}" if balance is not None else "unavailable"
        print(f"  {label + ':':<10} {shown}")


async def run(settings: Settings) -> int:
    currency = settings.currency_code

    print("=" * 60)
    print(f"SEND {currency} BETWEEN WALLETS")
    print("=" * 60)
    print(f"Network: {settings.network.upper()}")
    print()

    print("SENDER WALLET")
    print("-" * 60)
    try:
        sender_wallet = wallet_from_seed(getpass("Seed: "))
    except RLUSDError as e:
        print(f"❌ Error loading sender wallet: {e}")
        return 1

    print("\nRECIPIENT")
    print("-" * 60)
    recipient_address = input("Enter recipient address: ").strip()
    if not is_valid_address(recipient_address):
        print("❌ Invalid XRPL address")
        return 1

    print("\nAMOUNT")
    print("-" * 60)
    try:
        amount = parse_amount(input(f"Enter amount to send ({currency}): "))
    except RLUSDError as e:
        print(f"❌ {e}")
        return 1

    print("\nDESTINATION TAG (optional)")
    print("-" * 60)
    try:
        dest_tag = parse_destination_tag(input("Destination tag (press Enter to skip): ").strip())
    except RLUSDError as e:
        print(f"❌ {e}")
        return 1

    async with ledger_connection(settings.endpoints) as client:
        sender_status = await resolve_account_status(client, sender_wallet.address, settings.issuer, settings.ledger_currency)
        recipient_status = await resolve_account_status(client, recipient_address, settings.issuer, settings.ledger_currency)

        print("\n" + "=" * 60)
        print("TRANSACTION SUMMARY")
        print("=" * 60)
        print(f"From:   {sender_wallet.address} ({sender_status.trustline.balance} {currency})")
        print(f"To:     {recipient_address}")
        if not recipient_status.exists:
            print("        (Account not yet activated or not found)")
        elif not recipient_status.trustline.has_trustline:
            print(f"        (No {currency} trustline)")
        print(f"Amount: {amount} {currency}")
        if dest_tag is not None:
            print(f"Tag:    {dest_tag}")
        print(f"Fee:    ~0.000012 XRP (auto)")
        print()

        if input("Send transaction? (y/N): ").strip().lower() != 'y':
            print("Cancelled.")
            return 0

        print("\nSubmitting to XRPL...")
        try:
            result = await send_payment(
                client,
                sender_wallet,
                recipient_address,
                amount,
                settings.ledger_currency,
                settings.issuer,
                destination_tag=dest_tag,
                confirm_balances=True
            )
        except RLUSDError as e:
            print(f"❌ Transaction failed: {e}")
            return 1

    print("\n✓ Payment successful!")
    print(f"  Hash:   {result.tx_hash}")
    print(f"  Ledger: {result.ledger_index}")
    print_final_balances(result, currency)
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
