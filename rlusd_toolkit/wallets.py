"""
Wallet Management
Wallet generation, opt-in credential files and waiting for account activation
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from xrpl.wallet import Wallet

from rlusd_toolkit.config import RLUSD_ISSUER
from rlusd_toolkit.exceptions import FundingTimeoutError, ValidationError
from rlusd_toolkit.xrpl_utils import AccountStatus, resolve_account_status

# Minimum XRP requirements
XRP_REQUIREMENTS = {
    'base_reserve': 10,       # Base reserve for account
    'owner_reserve': 2,       # Per trustline/object
    'min_funding': 15,        # Recommended minimum
    'safe_operational': 25,   # Safe operational amount
}

SECRET_WARNING = 'KEEP THIS FILE SECURE! Never share your seed or private key!'


def generate_wallet() -> Wallet:
    return Wallet.create()


def wallet_from_seed(seed: str) -> Wallet:
    """Derive a wallet from a family seed, raising ValidationError on bad input"""
    seed = (seed or '').strip()
    if not seed.startswith('s'):
        raise ValidationError('Invalid seed format')
    try:
        return Wallet.from_seed(seed)
    except Exception as e:
        raise ValidationError(f'Failed to initialize wallet: {e}') from e


def wallet_for_address(seed: str, address: str) -> Wallet:
    wallet = wallet_from_seed(seed)
    if wallet.address != address:
        raise ValidationError('Seed does not match the provided address')
    return wallet


def wallet_details(wallet: Wallet) -> dict:
    """Public and secret wallet fields, for the caller to display or save"""
    return {
        'address': wallet.classic_address,
        'public_key': wallet.public_key,
        'seed': wallet.seed,
        'private_key': wallet.private_key,
    }


def _wallet_text(details: dict, created: str, network: str, issuer: str) -> str:
    address = details['address']
    return f"""XRPL {network.upper()} WALLET
Generated: {created}
Network: {network}

PUBLIC INFORMATION:
==================
Address: {address}
Public Key: {details['public_key']}

SECRET INFORMATION (KEEP SECURE!):
=================================
Seed: {details['seed']}
Private Key: {details['private_key']}

IMPORTANT NOTES:
- This account needs at least {XRP_REQUIREMENTS['base_reserve']} XRP to be activated
- Additional {XRP_REQUIREMENTS['owner_reserve']} XRP reserve required for each trustline
- NEVER share your seed or private key with anyone
- Make multiple secure backups of this information

NEXT STEPS:
1. Send at least {XRP_REQUIREMENTS['min_funding']} XRP to {address} to activate
2. Set up the RLUSD trustline (requires activated account)
3. Store this file securely and delete any copies

RLUSD ISSUER: {issuer}
"""


def save_wallet(wallet: Wallet, directory, fmt: str = 'json', network: str = 'mainnet',
                issuer: str = RLUSD_ISSUER, allow_plaintext: bool = False) -> Path:
    """
    Write wallet credentials, seed and private key included, in clear text

    Refuses unless ``allow_plaintext`` is True. The file is created with
    mode 0600 under ``directory``.
    """
    if not allow_plaintext:
        raise ValidationError('Refusing to write seed and private key in clear text without allow_plaintext=True')
    if fmt not in ('json', 'txt'):
        raise ValidationError(f'Unsupported wallet file format: {fmt}')

    details = wallet_details(wallet)
    now = datetime.now(timezone.utc)
    created = now.isoformat()
    stamp = now.strftime('%Y-%m-%dT%H-%M-%S')

    wallet_dir = Path(directory)
    wallet_dir.mkdir(parents=True, exist_ok=True)
    path = wallet_dir / f"wallet-{details['address']}-{stamp}.{fmt}"

    if fmt == 'json':
        content = json.dumps({
            'created': created,
            'network': network,
            **details,
            'warning': SECRET_WARNING,
        }, indent=2)
    else:
        content = _wallet_text(details, created, network, issuer)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(content)

    logger.warning(f"Wallet credentials for {details['address']} written to {path}")
    return path


async def wait_for_funding(client, address: str, required_xrp=XRP_REQUIREMENTS['min_funding'],
                           interval: float = 5.0, timeout: Optional[float] = None,
                           on_attempt: Optional[Callable[[int, AccountStatus], None]] = None) -> AccountStatus:
    """
    Poll until ``address`` exists and holds at least ``required_xrp`` XRP

    Polls forever unless ``timeout`` (seconds) is given, in which case
    FundingTimeoutError is raised once it elapses.
    """
    required = Decimal(str(required_xrp))
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None
    attempts = 0

    while True:
        attempts += 1
        status = await resolve_account_status(client, address)
        if on_attempt is not None:
            on_attempt(attempts, status)

        if status.exists and Decimal(status.balance) >= required:
            logger.info(f"Account {address} activated with {status.balance} XRP")
            return status

        if deadline is not None and loop.time() + interval > deadline:
            raise FundingTimeoutError(address, timeout)

        await asyncio.sleep(interval)
