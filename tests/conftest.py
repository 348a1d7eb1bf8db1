"""
Pytest fixtures for the RLUSD toolkit. Ledger access is faked in memory;
no test touches the network.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from xrpl.models.response import Response, ResponseStatus
from xrpl.wallet import Wallet

from rlusd_toolkit.config import RLUSD_CURRENCY_HEX, RLUSD_ISSUER
import rlusd_toolkit.xrpl_utils as xrpl_utils

ISSUER = RLUSD_ISSUER
CURRENCY = RLUSD_CURRENCY_HEX
SAMPLE_TX_HASH = "A" * 64


def xrp_drops(xrp) -> str:
    return str(int(xrp * 1_000_000))


def rlusd_line(balance="0", limit="1000000", currency=CURRENCY, issuer=ISSUER) -> dict:
    return {"account": issuer, "currency": currency, "balance": balance, "limit": limit}


class FakeLedgerClient:
    """In-memory stand-in for AsyncWebsocketClient"""

    def __init__(self, url="wss://fake.example", fail_open=False):
        self.url = url
        self.fail_open = fail_open
        self.accounts = {}
        self.lines = {}
        self.errors = {}
        self.failing_accounts = set()
        self.requests = []
        self.opened = False
        self.closed = False

    def add_account(self, address, xrp=50, sequence=1, lines=None):
        self.accounts[address] = {"Account": address, "Balance": xrp_drops(xrp), "Sequence": sequence}
        self.lines[address] = list(lines or [])

    async def open(self):
        if self.fail_open:
            raise ConnectionRefusedError(f"cannot reach {self.url}")
        self.opened = True
        self.closed = False

    def is_open(self):
        return self.opened and not self.closed

    async def close(self):
        self.closed = True

    async def request(self, request):
        self.requests.append(request)
        method = request.method.value
        address = request.account

        if method in self.errors:
            error = self.errors[method]
            if isinstance(error, Exception):
                raise error
            return Response(status=ResponseStatus.ERROR, result={"error": error})

        if address in self.failing_accounts:
            return Response(status=ResponseStatus.ERROR, result={"error": "noNetwork"})

        if address not in self.accounts:
            return Response(status=ResponseStatus.ERROR, result={"error": "actNotFound"})

        if method == "account_info":
            return Response(status=ResponseStatus.SUCCESS, result={"account_data": dict(self.accounts[address])})
        if method == "account_lines":
            return Response(status=ResponseStatus.SUCCESS, result={"account": address, "lines": self.lines[address]})
        raise AssertionError(f"unexpected request {method}")


class FakeSubmitter:
    """Replaces autofill_and_sign / submit_and_wait and applies successful transactions to the fake ledger"""

    def __init__(self, client, result_code="tesSUCCESS", raise_error=None):
        self.client = client
        self.result_code = result_code
        self.raise_error = raise_error
        self.submitted = []

    async def autofill_and_sign(self, transaction, client, wallet):
        return SimpleNamespace(tx=transaction, get_hash=lambda: SAMPLE_TX_HASH)

    async def submit_and_wait(self, transaction, client):
        tx = transaction.tx
        self.submitted.append(tx)
        if self.raise_error is not None:
            raise self.raise_error
        if self.result_code == "tesSUCCESS":
            self._apply(tx)
        return Response(status=ResponseStatus.SUCCESS, result={
            "hash": SAMPLE_TX_HASH,
            "ledger_index": 90000001,
            "Fee": "12",
            "meta": {"TransactionResult": self.result_code},
        })

    def _apply(self, tx):
        kind = tx.transaction_type.value
        if kind == "TrustSet":
            amount = tx.limit_amount
            self.client.lines.setdefault(tx.account, []).append(
                rlusd_line("0", amount.value, amount.currency, amount.issuer)
            )
        elif kind == "Payment":
            value = tx.amount.value
            for address, sign in ((tx.account, -1), (tx.destination, 1)):
                for line in self.client.lines.get(address, []):
                    if line["currency"] == tx.amount.currency:
                        line["balance"] = str(Decimal(line["balance"]) + sign * Decimal(value))


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def submitter(ledger, monkeypatch):
    fake = FakeSubmitter(ledger)
    monkeypatch.setattr(xrpl_utils, "autofill_and_sign", fake.autofill_and_sign)
    monkeypatch.setattr(xrpl_utils, "submit_and_wait", fake.submit_and_wait)
    return fake


@pytest.fixture
def sender():
    return Wallet.create()


@pytest.fixture
def receiver():
    return Wallet.create()
