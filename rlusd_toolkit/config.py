"""
RLUSD Toolkit Configuration
Settings loaded from the environment (.env supported) and the loguru setup
"""

import os
import sys
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# ==================== DEFAULTS ====================

MAINNET_SERVERS = (
    'wss://xrplcluster.com',
    'wss://s1.ripple.com',
    'wss://s2.ripple.com',
)

RLUSD_ISSUER = 'rMxCKbEDwqr76QuheSUMdEGf4B9xJ8m5De'
RLUSD_CURRENCY_CODE = 'RLUSD'
RLUSD_CURRENCY_HEX = '524C555344000000000000000000000000000000'

EXPLORER_URLS = {
    'mainnet': 'https://livenet.xrpl.org',
    'testnet': 'https://testnet.xrpl.org',
    'devnet': 'https://devnet.xrpl.org',
}

DEFAULT_TRUST_LIMIT = '1000000'


def currency_to_hex(code: str) -> str:
    """Encode a currency code as the 40 character hex form the ledger uses for non-standard codes"""
    encoded = code.encode('ascii').hex().upper()
    if len(encoded) > 40:
        raise ValueError(f"Currency code too long: {code}")
    return encoded.ljust(40, '0')


def ledger_currency(code: str, hex_code: Optional[str] = None) -> str:
    """Currency code as it appears in transactions and account_lines"""
    if len(code) == 3 and code != 'XRP':
        return code
    if hex_code:
        return hex_code.upper()
    return currency_to_hex(code)


def currency_display(code: str) -> str:
    """Readable form of a ledger currency code, e.g. the RLUSD hex becomes 'RLUSD'"""
    if len(code) != 40:
        return code
    try:
        return bytes.fromhex(code).rstrip(b'\x00').decode('ascii')
    except (ValueError, UnicodeDecodeError):
        return code


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


# ==================== SETTINGS ====================

@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings. Use ``updated`` to derive a changed copy."""
    endpoints: Tuple[str, ...] = MAINNET_SERVERS
    network: str = 'mainnet'
    issuer: str = RLUSD_ISSUER
    currency_code: str = RLUSD_CURRENCY_CODE
    currency_hex: Optional[str] = RLUSD_CURRENCY_HEX
    wallet_seed: Optional[str] = field(default=None, repr=False)
    logs_dir: str = 'logs'
    wallets_dir: str = 'wallets'
    is_test_mode: bool = True
    api_host: str = '0.0.0.0'
    api_port: int = 3000
    api_debug: bool = False
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Settings':
        servers = os.getenv('XRPL_SERVERS', '')
        endpoints = tuple(s.strip() for s in servers.split(',') if s.strip()) or MAINNET_SERVERS

        return cls(
            endpoints=endpoints,
            network=os.getenv('XRPL_NETWORK', 'mainnet'),
            issuer=os.getenv('RLUSD_ISSUER', RLUSD_ISSUER),
            currency_code=os.getenv('RLUSD_CURRENCY_CODE', RLUSD_CURRENCY_CODE),
            currency_hex=os.getenv('RLUSD_CURRENCY_HEX', RLUSD_CURRENCY_HEX) or None,
            wallet_seed=os.getenv('XRPL_SEED') or None,
            logs_dir=os.getenv('LOGS_DIR', 'logs'),
            wallets_dir=os.getenv('WALLETS_DIR', 'wallets'),
            is_test_mode=os.getenv('APP_ENV', 'development') != 'production',
            api_host=os.getenv('API_HOST', '0.0.0.0'),
            api_port=int(os.getenv('API_PORT', '3000')),
            api_debug=_env_flag('API_DEBUG'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
        )

    @property
    def ledger_currency(self) -> str:
        return ledger_currency(self.currency_code, self.currency_hex)

    @property
    def explorer_url(self) -> str:
        return EXPLORER_URLS.get(self.network, EXPLORER_URLS['mainnet'])

    def tx_explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/transactions/{tx_hash}"

    def updated(self, **changes) -> 'Settings':
        return replace(self, **changes)


# ==================== LOGGING ====================

def configure_logging(level: str = 'INFO'):
    """Replace loguru's default sink with a single stderr sink at ``level``"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{function} - {message}",
    )
