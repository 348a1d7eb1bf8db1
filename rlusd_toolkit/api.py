"""
RLUSD API Server
FastAPI server for wallet status, trustlines, token payments and transaction logs
"""

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.wallet import Wallet

from rlusd_toolkit.config import DEFAULT_TRUST_LIMIT, Settings, configure_logging, currency_to_hex
from rlusd_toolkit.exceptions import (
    AccountStateError,
    LedgerConnectionError,
    LedgerQueryError,
    LedgerRejection,
    ValidationError,
)
from rlusd_toolkit.transaction_log import TransactionLog
from rlusd_toolkit.wallets import wallet_from_seed
from rlusd_toolkit.xrpl_utils import (
    API_MAX_PAYMENT_AMOUNT,
    MAX_PAYMENT_AMOUNT,
    AccountStatus,
    TrustlineStatus,
    ensure_trustline,
    is_valid_address,
    ledger_connection,
    parse_amount,
    parse_destination_tag,
    resolve_account_status,
    send_payment,
)

CURRENCY_HEX_RE = re.compile(r'^[0-9A-Fa-f]{40}$')

# ==================== APPLICATION CONTEXT ====================

@dataclass(frozen=True)
class ConfigSnapshot:
    """Settings and signing wallet, always replaced together"""
    settings: Settings
    wallet: Optional[Wallet] = None


class AppContext:
    """Per-app state injected into every handler"""

    def __init__(self, settings: Settings, wallet: Optional[Wallet] = None,
                 transaction_log: Optional[TransactionLog] = None,
                 client_factory: Callable = AsyncWebsocketClient):
        self.snapshot = ConfigSnapshot(settings.updated(wallet_seed=None), wallet)
        self.log = transaction_log or TransactionLog(settings.logs_dir)
        self.client_factory = client_factory
        # one signing identity: submissions must not race on its sequence
        self.submit_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> 'AppContext':
        wallet = None
        if settings.wallet_seed:
            try:
                wallet = wallet_from_seed(settings.wallet_seed)
                logger.info(f"Wallet initialized from environment: {wallet.address}")
            except ValidationError as e:
                logger.error(f"Failed to initialize wallet from environment: {e}")
        return cls(settings, wallet=wallet, **kwargs)

    def replace(self, settings: Settings, wallet: Optional[Wallet]):
        self.snapshot = ConfigSnapshot(settings, wallet)

    def apply(self, changes: dict, wallet: Optional[Wallet] = None) -> ConfigSnapshot:
        """
        Apply validated changes to the current snapshot

        Must be called without awaiting between reading and replacing, so an
        update that finished in the meantime is kept. ``wallet=None`` keeps
        the current wallet.
        """
        current = self.snapshot
        self.snapshot = ConfigSnapshot(current.settings.updated(**changes), wallet or current.wallet)
        return self.snapshot

    async def record(self, type: str, details: dict, success: bool = True) -> dict:
        """Log a record stamped with the issuer and currency in effect"""
        return await self.log.record_async(type, details, success=success,
                                           config=config_summary(self.snapshot.settings))

    def connect(self, settings: Settings):
        return ledger_connection(settings.endpoints, self.client_factory)


def get_context(request: Request) -> AppContext:
    return request.app.state.context

# ==================== ERROR HANDLING DECORATOR ====================

def handle_errors(func: Callable):
    """Decorator to map toolkit errors onto HTTP responses"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except (ValidationError, AccountStateError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except LedgerRejection as e:
            raise HTTPException(status_code=502, detail=str(e))
        except (LedgerConnectionError, LedgerQueryError) as e:
            raise HTTPException(status_code=503, detail=str(e))
        except Exception as e:
            logger.exception(f"Unhandled error in {func.__name__}")
            raise HTTPException(status_code=500, detail=str(e))
    return wrapper

# ==================== REQUEST MODELS ====================

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConfigUpdateRequest(CamelModel):
    issuer: Optional[str] = None
    currency_code: Optional[str] = Field(None, alias='currencyCode')
    currency_hex: Optional[str] = Field(None, alias='currencyHex')
    wallet_seed: Optional[str] = Field(None, alias='walletSeed')


class ConnectionTestRequest(CamelModel):
    wallet_seed: Optional[str] = Field(None, alias='walletSeed')


class AddressRequest(CamelModel):
    address: Optional[str] = None


class TrustlineRequest(CamelModel):
    limit: Union[str, int, float] = DEFAULT_TRUST_LIMIT


class SendRequest(CamelModel):
    destination: Optional[str] = None
    amount: Union[str, int, float, None] = None
    destination_tag: Union[int, str, None] = Field(None, alias='destinationTag')

# ==================== HELPER FUNCTIONS ====================

def safe_config(snapshot: ConfigSnapshot) -> dict:
    """Current configuration; never includes the seed"""
    settings = snapshot.settings
    return {
        "issuer": settings.issuer,
        "currencyCode": settings.currency_code,
        "currencyHex": settings.currency_hex,
        "walletAddress": snapshot.wallet.address if snapshot.wallet else '',
        "hasWallet": snapshot.wallet is not None,
        "isTestMode": settings.is_test_mode,
        "network": settings.network,
    }


def config_summary(settings: Settings) -> dict:
    return {"issuer": settings.issuer, "currency": settings.currency_code}


def status_payload(status: AccountStatus) -> dict:
    trustline = status.trustline or TrustlineStatus.empty()
    return {
        "exists": status.exists,
        "xrpBalance": status.balance,
        "sequence": status.sequence,
        "hasTrustline": trustline.has_trustline,
        "balance": trustline.balance,
        "trustlineLimit": trustline.limit,
    }


def require_wallet(snapshot: ConfigSnapshot) -> Wallet:
    if snapshot.wallet is None:
        raise HTTPException(status_code=400, detail="No wallet configured")
    return snapshot.wallet

# ==================== CONFIGURATION ROUTES ====================

router = APIRouter(prefix="/api")


@router.get("/config")
async def get_config(ctx: AppContext = Depends(get_context)):
    """Get current configuration"""
    return safe_config(ctx.snapshot)


@router.post("/config")
@handle_errors
async def update_config(request: ConfigUpdateRequest, ctx: AppContext = Depends(get_context)):
    """
    Update configuration

    - Every field is validated before anything changes
    - A new wallet seed must belong to an activated account
    - Settings and wallet are swapped in one step
    """
    snapshot = ctx.snapshot
    changes = {}

    if request.issuer:
        if not is_valid_address(request.issuer):
            raise HTTPException(status_code=400, detail="Invalid issuer address")
        changes["issuer"] = request.issuer

    if request.currency_hex:
        if not CURRENCY_HEX_RE.match(request.currency_hex):
            raise HTTPException(status_code=400, detail="Invalid currency hex (must be 40 hex characters)")
        changes["currency_hex"] = request.currency_hex.upper()

    if request.currency_code:
        code = request.currency_code.strip()
        if not code or code.upper() == 'XRP':
            raise HTTPException(status_code=400, detail="Invalid currency code")
        changes["currency_code"] = code
        if "currency_hex" not in changes:
            try:
                changes["currency_hex"] = currency_to_hex(code) if len(code) != 3 else None
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid currency code")

    wallet = None
    if request.wallet_seed:
        wallet = wallet_from_seed(request.wallet_seed)
        async with ctx.connect(snapshot.settings) as client:
            status = await resolve_account_status(client, wallet.address)
        if not status.exists:
            raise HTTPException(
                status_code=400,
                detail=f"Wallet not activated. Send at least 10 XRP to activate. Address: {wallet.address}"
            )

    # other updates may have landed while the seed was checked
    ctx.apply(changes, wallet)

    await ctx.record('config_update', {
        "changes": {
            "issuer": request.issuer,
            "currencyCode": request.currency_code,
            "currencyHex": request.currency_hex,
            "hasWallet": bool(request.wallet_seed),
        }
    })

    return {"success": True, "config": safe_config(ctx.snapshot)}


@router.post("/config/test-connection")
@handle_errors
async def test_connection(request: ConnectionTestRequest, ctx: AppContext = Depends(get_context)):
    """Check that a seed is valid and its account is reachable"""
    if not request.wallet_seed:
        raise HTTPException(status_code=400, detail="Wallet seed required")

    settings = ctx.snapshot.settings
    test_wallet = wallet_from_seed(request.wallet_seed)

    async with ctx.connect(settings) as client:
        status = await resolve_account_status(client, test_wallet.address, settings.issuer, settings.ledger_currency)

    payload = status_payload(status)
    return {
        "success": True,
        "address": test_wallet.address,
        "exists": payload["exists"],
        "balance": payload["balance"],
        "xrpBalance": payload["xrpBalance"],
        "hasTrustline": payload["hasTrustline"],
    }


@router.get("/health")
async def health_check(ctx: AppContext = Depends(get_context)):
    """Simple health check endpoint"""
    snapshot = ctx.snapshot
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "hasWallet": snapshot.wallet is not None,
        "config": config_summary(snapshot.settings),
    }

# ==================== ACCOUNT ROUTES ====================

@router.get("/wallet")
@handle_errors
async def get_wallet(ctx: AppContext = Depends(get_context)):
    """Status of the configured wallet"""
    snapshot = ctx.snapshot
    wallet = require_wallet(snapshot)
    settings = snapshot.settings

    async with ctx.connect(settings) as client:
        status = await resolve_account_status(client, wallet.address, settings.issuer, settings.ledger_currency)

    return {
        "address": wallet.address,
        **status_payload(status),
        "issuer": settings.issuer,
        "currency": settings.currency_code,
    }


@router.post("/balance")
@handle_errors
async def check_balance(request: AddressRequest, ctx: AppContext = Depends(get_context)):
    """Check balance for any address"""
    address = request.address
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid address")

    settings = ctx.snapshot.settings
    try:
        async with ctx.connect(settings) as client:
            status = await resolve_account_status(client, address, settings.issuer, settings.ledger_currency)
    except Exception as e:
        await ctx.record('balance_check', {"address": address, "error": str(e)}, success=False)
        raise

    payload = status_payload(status)
    await ctx.record('balance_check', {"address": address, "balance": payload["balance"]})

    return {
        "address": address,
        **payload,
        "currency": settings.currency_code,
        "issuer": settings.issuer,
    }

# ==================== TRANSACTION ROUTES ====================

@router.post("/trustline")
@handle_errors
async def create_trustline(request: Optional[TrustlineRequest] = None, ctx: AppContext = Depends(get_context)):
    """
    Create the trustline for the configured currency

    - No-op when the trustline already exists
    """
    snapshot = ctx.snapshot
    wallet = require_wallet(snapshot)
    settings = snapshot.settings
    limit = str((request or TrustlineRequest()).limit)

    try:
        async with ctx.submit_lock:
            async with ctx.connect(settings) as client:
                result = await ensure_trustline(client, wallet, settings.issuer, settings.ledger_currency, limit)
    except Exception as e:
        await ctx.record('create_trustline', {
            "address": wallet.address,
            "error": str(e),
            "resultCode": getattr(e, 'result_code', None),
            "limit": limit,
            "currency": settings.currency_code,
        }, success=False)
        raise

    await ctx.record('create_trustline', {
        "address": wallet.address,
        "currency": settings.currency_code,
        "issuer": settings.issuer,
        "limit": result.limit,
        "created": result.created,
        "hash": result.tx_hash,
        "ledger": result.ledger_index,
    })

    return {
        "success": True,
        "created": result.created,
        "hash": result.tx_hash,
        "ledger": result.ledger_index,
        "limit": result.limit,
        "balance": result.balance,
        "currency": settings.currency_code,
        "issuer": settings.issuer,
    }


@router.post("/send")
@handle_errors
async def send_token(request: SendRequest, ctx: AppContext = Depends(get_context)):
    """
    Send the configured currency to another address

    - Amounts above the API safety limit are refused; use the CLI for those
    - Sender and destination must both hold the trustline
    """
    snapshot = ctx.snapshot
    wallet = require_wallet(snapshot)
    settings = snapshot.settings

    if not is_valid_address(request.destination):
        raise HTTPException(status_code=400, detail="Invalid destination address")

    try:
        amount = parse_amount(request.amount, MAX_PAYMENT_AMOUNT)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid amount")

    if amount > API_MAX_PAYMENT_AMOUNT:
        raise HTTPException(
            status_code=400,
            detail=f"Amount exceeds safety limit of {API_MAX_PAYMENT_AMOUNT}. Use CLI for larger amounts."
        )

    destination_tag = parse_destination_tag(request.destination_tag)

    try:
        async with ctx.submit_lock:
            async with ctx.connect(settings) as client:
                result = await send_payment(
                    client,
                    wallet,
                    request.destination,
                    amount,
                    settings.ledger_currency,
                    settings.issuer,
                    destination_tag=destination_tag,
                    max_amount=API_MAX_PAYMENT_AMOUNT
                )
    except Exception as e:
        await ctx.record('send_payment', {
            "from": wallet.address,
            "to": request.destination,
            "amount": format(amount, 'f'),
            "currency": settings.currency_code,
            "error": str(e),
            "resultCode": getattr(e, 'result_code', None),
        }, success=False)
        raise

    log_entry = await ctx.record('send_payment', {
        "from": result.sender,
        "to": result.destination,
        "amount": result.amount,
        "currency": settings.currency_code,
        "issuer": result.issuer,
        "destinationTag": result.destination_tag,
        "hash": result.tx_hash,
        "ledger": result.ledger_index,
        "fee": result.fee,
        "result": result.result_code,
    })

    return {
        "success": True,
        "hash": result.tx_hash,
        "ledger": result.ledger_index,
        "explorerUrl": settings.tx_explorer_url(result.tx_hash),
        "log": log_entry,
    }

# ==================== LOG ROUTES ====================

@router.get("/logs")
async def get_logs(limit: int = 50, log_type: Optional[str] = Query(None, alias='type'),
                   date: Optional[str] = None, ctx: AppContext = Depends(get_context)):
    """Transaction logs, newest first"""
    logs = ctx.log.query(type=log_type, date=date, limit=limit)
    return {"logs": logs, "total": len(logs)}


@router.get("/logs/export")
async def export_logs(ctx: AppContext = Depends(get_context)):
    """Export logs as CSV"""
    csv_text = ctx.log.export_csv(default_currency=ctx.snapshot.settings.currency_code)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=xrpl-transactions.csv"}
    )


@router.post("/validate")
async def validate_address(request: AddressRequest):
    """Validate an address"""
    if not request.address:
        raise HTTPException(status_code=400, detail="Address required")

    is_valid = is_valid_address(request.address)
    return {
        "address": request.address,
        "isValid": is_valid,
        "message": "Valid XRP Ledger address" if is_valid else "Invalid address format",
    }

# ==================== FASTAPI APP ====================

def create_app(context: Optional[AppContext] = None) -> FastAPI:
    if context is None:
        context = AppContext.from_settings(Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        await asyncio.to_thread(context.log.load_history)
        snapshot = context.snapshot
        logger.info(f"Issuer: {snapshot.settings.issuer}")
        logger.info(f"Currency: {snapshot.settings.currency_code}")
        logger.info(f"Wallet: {snapshot.wallet.address if snapshot.wallet else 'Not configured'}")
        logger.info("API Server started")
        yield
        logger.info("API Server stopped")

    app = FastAPI(
        title="RLUSD API",
        description="API for RLUSD wallets, trustlines and payments on the XRP Ledger",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()

# ==================== RUN SERVER ====================

def main():
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    print(f"Starting RLUSD API Server on {settings.api_host}:{settings.api_port}")
    print(f"Docs available at: http://{settings.api_host}:{settings.api_port}/docs")

    uvicorn.run(
        "rlusd_toolkit.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug
    )


if __name__ == "__main__":
    main()
