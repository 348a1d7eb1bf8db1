"""
XRPL Utilities
Connection fallback, account/trustline status, trustline creation and
issued-currency payments on the XRP Ledger
"""

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Optional, Iterable, Callable, Any

from loguru import logger
from xrpl.constants import XRPLException
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.transaction import (
    autofill_and_sign,
    submit_and_wait,
    XRPLReliableSubmissionException,
)
from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.core.binarycodec.exceptions import XRPLBinaryCodecException
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountInfo, AccountLines
from xrpl.models.transactions import Payment, TrustSet
from xrpl.utils import drops_to_xrp
from xrpl.wallet import Wallet

from rlusd_toolkit.config import DEFAULT_TRUST_LIMIT, currency_display
from rlusd_toolkit.exceptions import (
    AccountStateError,
    LedgerConnectionError,
    LedgerQueryError,
    LedgerRejection,
    RLUSDError,
    ValidationError,
)

# ==================== CONSTANTS ====================

SUCCESS_RESULT = "tesSUCCESS"

# Library-level ceiling; the HTTP API applies API_MAX_PAYMENT_AMOUNT on top
MAX_PAYMENT_AMOUNT = Decimal('1000000000')
API_MAX_PAYMENT_AMOUNT = Decimal('1000')

MAX_DESTINATION_TAG = 2**32 - 1

# Issued-currency amounts: 15 significant digits, smallest positive value 1e-81
MAX_SIGNIFICANT_DIGITS = 15
MIN_AMOUNT_MAGNITUDE = -81

_RESULT_CODE_RE = re.compile(r"\b(te[cfmlrs][A-Z_]+)\b")

# ==================== RESULT TYPES ====================

@dataclass
class TrustlineStatus:
    has_trustline: bool
    balance: str = "0"
    limit: str = "0"

    @classmethod
    def empty(cls) -> 'TrustlineStatus':
        return cls(has_trustline=False, balance="0", limit="0")


@dataclass
class AccountStatus:
    exists: bool
    balance: str = "0"
    sequence: Optional[int] = None
    trustline: Optional[TrustlineStatus] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TrustlineResult:
    created: bool
    currency: str
    issuer: str
    limit: str
    balance: str = "0"
    tx_hash: Optional[str] = None
    ledger_index: Optional[int] = None
    result_code: Optional[str] = None


@dataclass
class PaymentResult:
    tx_hash: str
    ledger_index: Optional[int]
    result_code: str
    fee: Optional[str]
    sender: str
    destination: str
    amount: str
    currency: str
    issuer: str
    destination_tag: Optional[int] = None
    sender_balance: Optional[str] = None
    destination_balance: Optional[str] = None

# ==================== VALIDATION ====================

def is_valid_address(address: Any) -> bool:
    """Validate an XRPL classic address (checksum included)"""
    if not address or not isinstance(address, str):
        return False
    try:
        return is_valid_classic_address(address)
    except Exception:
        return False


def parse_amount(amount: Any, max_amount: Optional[Decimal] = MAX_PAYMENT_AMOUNT, field: str = "amount") -> Decimal:
    """
    Parse a positive decimal amount

    Raises ValidationError for non-numeric, non-finite, zero or negative
    values, for values the ledger cannot represent (more than 15
    significant digits, or below 1e-81), and for values above
    ``max_amount`` when one is given.
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError(f"Invalid {field}: {amount!r}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}: {amount!r}")

    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Invalid {field}: must be a positive number")
    if len(value.normalize().as_tuple().digits) > MAX_SIGNIFICANT_DIGITS:
        raise ValidationError(f"Invalid {field}: at most {MAX_SIGNIFICANT_DIGITS} significant digits")
    if value.adjusted() < MIN_AMOUNT_MAGNITUDE:
        raise ValidationError(f"Invalid {field}: too small")
    if max_amount is not None and value > max_amount:
        raise ValidationError(f"Amount exceeds safety limit of {max_amount}")
    return value


def is_valid_amount(amount: Any, max_amount: Optional[Decimal] = MAX_PAYMENT_AMOUNT) -> bool:
    try:
        parse_amount(amount, max_amount)
    except ValidationError:
        return False
    return True


def parse_destination_tag(tag: Any) -> Optional[int]:
    if tag is None or tag == '':
        return None
    try:
        value = int(tag)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid destination tag: {tag!r}")
    if not 0 <= value <= MAX_DESTINATION_TAG:
        raise ValidationError(f"Destination tag must be between 0 and {MAX_DESTINATION_TAG}")
    return value


def _format_decimal(value: Decimal) -> str:
    return format(value, 'f')

# ==================== CONNECTION ====================

async def close_connection(client) -> None:
    """Close a client; safe on clients that never finished opening"""
    if client is None:
        return
    try:
        if client.is_open():
            await client.close()
    except Exception as e:
        logger.warning(f"Error while closing XRPL connection: {e}")


async def open_connection(endpoints: Iterable[str], client_factory: Callable = AsyncWebsocketClient):
    """
    Open a connection to the first reachable endpoint

    Endpoints are tried once each, in order. Raises LedgerConnectionError
    when every endpoint fails.
    """
    endpoints = list(endpoints)
    if not endpoints:
        raise LedgerConnectionError(endpoints, "no endpoints configured")

    last_error = None
    for url in endpoints:
        logger.info(f"Attempting to connect to {url}...")
        client = client_factory(url)
        try:
            await client.open()
        except Exception as e:
            logger.warning(f"Failed to connect to {url}: {e}")
            last_error = e
            await close_connection(client)
            continue

        logger.info(f"Successfully connected to {url}")
        return client

    raise LedgerConnectionError(endpoints, last_error)


@asynccontextmanager
async def ledger_connection(endpoints: Iterable[str], client_factory: Callable = AsyncWebsocketClient):
    """``async with ledger_connection(servers) as client:``; always closes the client"""
    client = await open_connection(endpoints, client_factory)
    try:
        yield client
    finally:
        await close_connection(client)
        logger.debug("Disconnected from XRPL")

# ==================== ACCOUNT STATUS ====================

async def _request(client, request):
    command = request.method.value
    try:
        return await client.request(request)
    except Exception as e:
        raise LedgerQueryError(command, type(e).__name__, str(e)) from e


async def get_trustline(client, address: str, issuer: str, currency: str) -> TrustlineStatus:
    """Find the trust line to ``issuer`` whose currency matches ``currency`` exactly"""
    response = await _request(client, AccountLines(
        account=address,
        peer=issuer,
        ledger_index="validated"
    ))
    if not response.is_successful():
        raise LedgerQueryError("account_lines", response.result.get("error"), response.result.get("error_message"))

    for line in response.result.get("lines", []):
        if line.get("currency") == currency:
            return TrustlineStatus(
                has_trustline=True,
                balance=line.get("balance", "0"),
                limit=line.get("limit", "0")
            )

    return TrustlineStatus.empty()


async def resolve_account_status(client, address: str, issuer: Optional[str] = None,
                                 currency: Optional[str] = None) -> AccountStatus:
    """
    Account existence, XRP balance and sequence at the validated ledger

    A missing account (actNotFound) is returned as ``exists=False`` with a
    zero balance. When ``issuer`` and ``currency`` are both given, the
    matching trust line is attached as ``status.trustline``.
    """
    with_trustline = bool(issuer and currency)

    response = await _request(client, AccountInfo(
        account=address,
        ledger_index="validated"
    ))

    if not response.is_successful():
        error = response.result.get("error")
        if error == "actNotFound":
            return AccountStatus(
                exists=False,
                balance="0",
                trustline=TrustlineStatus.empty() if with_trustline else None
            )
        raise LedgerQueryError("account_info", error, response.result.get("error_message"))

    account_data = response.result["account_data"]
    status = AccountStatus(
        exists=True,
        balance=str(drops_to_xrp(str(account_data["Balance"]))),
        sequence=account_data.get("Sequence")
    )

    if with_trustline:
        status.trustline = await get_trustline(client, address, issuer, currency)

    return status


async def get_token_balance(client, address: str, issuer: str, currency: str) -> str:
    status = await resolve_account_status(client, address, issuer, currency)
    return status.trustline.balance


async def _refresh_balance(client, address: str, issuer: str, currency: str, tx_hash: str) -> Optional[str]:
    try:
        return await get_token_balance(client, address, issuer, currency)
    except RLUSDError as e:
        logger.warning(f"Payment {tx_hash} succeeded but balance refresh for {address} failed: {e}")
        return None

# ==================== SUBMISSION ====================

def _result_code_from(error: Exception) -> str:
    match = _RESULT_CODE_RE.search(str(error))
    return match.group(1) if match else str(error)


async def submit_transaction(client, transaction, wallet: Wallet):
    """
    Autofill, sign, submit and wait for validation

    Returns the validated response. Raises LedgerRejection with the raw
    result code when the outcome is anything other than tesSUCCESS,
    ValidationError when the transaction cannot be encoded and
    LedgerQueryError when autofill or submission fails in transport.
    """
    tx_type = transaction.transaction_type.value
    try:
        signed = await autofill_and_sign(transaction=transaction, client=client, wallet=wallet)
        logger.info(f"{tx_type} signed. Hash: {signed.get_hash()}")
        response = await submit_and_wait(transaction=signed, client=client)
    except XRPLReliableSubmissionException as e:
        result_code = _result_code_from(e)
        logger.error(f"{tx_type} rejected: {result_code}")
        raise LedgerRejection(result_code) from e
    except XRPLBinaryCodecException as e:
        logger.error(f"{tx_type} could not be encoded: {e}")
        raise ValidationError(f"Transaction could not be encoded: {e}") from e
    except (XRPLException, OSError, asyncio.TimeoutError) as e:
        logger.error(f"{tx_type} submission failed: {e}")
        raise LedgerQueryError("submit", type(e).__name__, str(e)) from e

    result_code = response.result.get("meta", {}).get("TransactionResult")
    tx_hash = response.result.get("hash")
    if result_code != SUCCESS_RESULT:
        logger.error(f"{tx_type} {tx_hash} failed: {result_code}")
        raise LedgerRejection(result_code, tx_hash)

    logger.info(f"{tx_type} {tx_hash} validated in ledger {response.result.get('ledger_index')}")
    return response


def _fee_of(result: dict) -> Optional[str]:
    return result.get("Fee") or result.get("tx_json", {}).get("Fee")

# ==================== TRUST LINE OPERATIONS ====================

async def ensure_trustline(client, wallet: Wallet, issuer: str, currency: str,
                           limit: Any = DEFAULT_TRUST_LIMIT) -> TrustlineResult:
    """
    Make sure ``wallet`` holds a trust line for ``currency`` issued by ``issuer``

    An existing line is returned as-is (``created=False``) and nothing is
    submitted. Otherwise a TrustSet is submitted and the call blocks until
    the ledger validates or rejects it.
    """
    if not is_valid_address(issuer):
        raise ValidationError("Invalid issuer address")
    limit_value = _format_decimal(parse_amount(limit, max_amount=None, field="limit"))

    status = await resolve_account_status(client, wallet.address, issuer, currency)
    if not status.exists:
        raise AccountStateError(
            "Account does not exist on ledger. Send at least 10 XRP to activate it.",
            address=wallet.address
        )

    if status.trustline.has_trustline:
        logger.info(f"{currency_display(currency)} trustline already exists for {wallet.address}")
        return TrustlineResult(
            created=False,
            currency=currency,
            issuer=issuer,
            limit=status.trustline.limit,
            balance=status.trustline.balance
        )

    logger.info(f"Creating {currency_display(currency)} trustline for {wallet.address}...")
    trust_tx = TrustSet(
        account=wallet.address,
        limit_amount=IssuedCurrencyAmount(
            currency=currency,
            issuer=issuer,
            value=limit_value
        )
    )

    response = await submit_transaction(client, trust_tx, wallet)
    return TrustlineResult(
        created=True,
        currency=currency,
        issuer=issuer,
        limit=limit_value,
        balance="0",
        tx_hash=response.result.get("hash"),
        ledger_index=response.result.get("ledger_index"),
        result_code=SUCCESS_RESULT
    )

# ==================== TOKEN PAYMENTS ====================

async def send_payment(client, wallet: Wallet, destination: str, amount: Any, currency: str, issuer: str,
                       destination_tag: Any = None, max_amount: Decimal = MAX_PAYMENT_AMOUNT,
                       confirm_balances: bool = False) -> PaymentResult:
    """
    Send an issued-currency payment

    Args:
        client: open XRPL client
        wallet: sender wallet (signs the transaction)
        destination: receiving classic address
        amount: decimal amount as string or number
        currency: ledger currency code (3 chars or 40 hex)
        issuer: issuer address of the currency
        destination_tag: optional 32-bit destination tag
        max_amount: safety ceiling for ``amount``
        confirm_balances: re-query both balances after success

    Local checks run first and make no ledger call. Account checks only
    query. Raises ValidationError, AccountStateError or LedgerRejection.
    """
    label = currency_display(currency)

    if not is_valid_address(wallet.address):
        raise ValidationError("Invalid sender address")
    if not is_valid_address(destination):
        raise ValidationError("Invalid destination address")
    if not is_valid_address(issuer):
        raise ValidationError("Invalid issuer address")
    value = parse_amount(amount, max_amount)
    tag = parse_destination_tag(destination_tag)

    logger.info(f"Preparing to send {value} {label} from {wallet.address} to {destination}")

    sender_status = await resolve_account_status(client, wallet.address, issuer, currency)
    if not sender_status.exists:
        raise AccountStateError("Sender account does not exist on ledger", address=wallet.address)
    if not sender_status.trustline.has_trustline:
        raise AccountStateError(f"Sender does not have {label} trustline", address=wallet.address)
    available = Decimal(sender_status.trustline.balance)
    if available < value:
        raise AccountStateError(
            f"Insufficient {label} balance. Available: {sender_status.trustline.balance}",
            address=wallet.address,
            available=sender_status.trustline.balance
        )

    dest_status = await resolve_account_status(client, destination, issuer, currency)
    if not dest_status.exists:
        raise AccountStateError("Destination account does not exist on ledger", address=destination)
    if not dest_status.trustline.has_trustline:
        raise AccountStateError(
            f"Destination does not have {label} trustline. They must set up a trustline first.",
            address=destination
        )

    payment_tx_args = {
        "account": wallet.address,
        "destination": destination,
        "amount": IssuedCurrencyAmount(
            currency=currency,
            issuer=issuer,
            value=_format_decimal(value)
        ),
    }
    if tag is not None:
        payment_tx_args["destination_tag"] = tag

    response = await submit_transaction(client, Payment(**payment_tx_args), wallet)

    result = PaymentResult(
        tx_hash=response.result.get("hash"),
        ledger_index=response.result.get("ledger_index"),
        result_code=SUCCESS_RESULT,
        fee=_fee_of(response.result),
        sender=wallet.address,
        destination=destination,
        amount=_format_decimal(value),
        currency=currency,
        issuer=issuer,
        destination_tag=tag
    )

    if confirm_balances:
        result.sender_balance = await _refresh_balance(client, wallet.address, issuer, currency, result.tx_hash)
        result.destination_balance = await _refresh_balance(client, destination, issuer, currency, result.tx_hash)

    return result
