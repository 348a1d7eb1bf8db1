"""
HTTP API tests using FastAPI's TestClient against the in-memory ledger

Test plan:
- Config: rejected updates change nothing, accepted updates swap atomically
- Accounts: wallet and balance status, address validation
- Transactions: trustline idempotence, send limits, logging of outcomes
- Error mapping: rejection is 502, unreachable ledger is 503
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from xrpl.constants import XRPLException
from xrpl.wallet import Wallet

import rlusd_toolkit.xrpl_utils as xrpl_utils
from rlusd_toolkit.api import AppContext, create_app
from rlusd_toolkit.config import Settings

from conftest import ISSUER, SAMPLE_TX_HASH, FakeLedgerClient, rlusd_line


@pytest.fixture
def context(tmp_path, ledger):
    settings = Settings(logs_dir=str(tmp_path / "logs"))
    return AppContext(settings, client_factory=lambda url: ledger)


@pytest.fixture
def api(context):
    with TestClient(create_app(context)) as client:
        yield client


@pytest.fixture
def funded(context, ledger, sender, receiver):
    """Configured wallet and a receiver, both holding the trustline"""
    ledger.add_account(sender.address, lines=[rlusd_line("100")])
    ledger.add_account(receiver.address, lines=[rlusd_line("0")])
    context.replace(context.snapshot.settings, sender)
    return context

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_get_config_hides_seed(api):
    response = api.get("/api/config")
    assert response.status_code == 200
    data = response.json()
    assert data["issuer"] == ISSUER
    assert data["currencyCode"] == "RLUSD"
    assert data["hasWallet"] is False
    assert data["walletAddress"] == ""
    assert "walletSeed" not in data


def test_seed_from_settings_is_not_kept(tmp_path, sender):
    ctx = AppContext(Settings(wallet_seed=sender.seed, logs_dir=str(tmp_path)))
    assert ctx.snapshot.settings.wallet_seed is None


def test_from_settings_loads_wallet(tmp_path, sender):
    ctx = AppContext.from_settings(Settings(wallet_seed=sender.seed, logs_dir=str(tmp_path)))
    assert ctx.snapshot.wallet.address == sender.address


def test_invalid_currency_hex_changes_nothing(api, context):
    before = context.snapshot
    response = api.post("/api/config", json={"issuer": "rMxCKbEDwqr76QuheSUMdEGf4B9xJ8m5De", "currencyHex": "XYZ"})
    assert response.status_code == 400
    assert context.snapshot is before
    assert context.log.query(type="config_update") == []


def test_invalid_issuer(api, context):
    before = context.snapshot
    response = api.post("/api/config", json={"issuer": "rInvalid"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid issuer address"
    assert context.snapshot is before


def test_seed_for_missing_account_is_refused(api, context, sender):
    response = api.post("/api/config", json={"walletSeed": sender.seed, "currencyCode": "USD"})
    assert response.status_code == 400
    assert sender.address in response.json()["detail"]
    assert context.snapshot.wallet is None
    assert context.snapshot.settings.currency_code == "RLUSD"


def test_invalid_seed(api):
    response = api.post("/api/config", json={"walletSeed": "not-a-seed"})
    assert response.status_code == 400


def test_config_update(api, context, ledger, sender):
    ledger.add_account(sender.address)
    response = api.post("/api/config", json={"walletSeed": sender.seed, "currencyCode": "USD"})

    assert response.status_code == 200
    config = response.json()["config"]
    assert config["hasWallet"] is True
    assert config["walletAddress"] == sender.address
    assert config["currencyCode"] == "USD"
    assert config["currencyHex"] is None
    assert context.snapshot.settings.ledger_currency == "USD"

    logs = api.get("/api/logs", params={"type": "config_update"}).json()["logs"]
    assert len(logs) == 1
    assert logs[0]["changes"]["hasWallet"] is True
    assert sender.seed not in str(logs[0])


def test_currency_code_derives_hex(api, context):
    response = api.post("/api/config", json={"currencyCode": "EURQ"})
    assert response.status_code == 200
    assert context.snapshot.settings.currency_hex == "4555525100000000000000000000000000000000"


def test_test_connection(api, ledger, sender):
    ledger.add_account(sender.address, xrp=30, lines=[rlusd_line("4")])
    response = api.post("/api/config/test-connection", json={"walletSeed": sender.seed})
    assert response.status_code == 200
    data = response.json()
    assert data["address"] == sender.address
    assert data["exists"] is True
    assert data["hasTrustline"] is True
    assert data["balance"] == "4"


def test_test_connection_requires_seed(api):
    assert api.post("/api/config/test-connection", json={}).status_code == 400


def test_health(api):
    data = api.get("/api/health").json()
    assert data["status"] == "ok"
    assert data["hasWallet"] is False
    assert data["config"] == {"issuer": ISSUER, "currency": "RLUSD"}

# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def test_wallet_requires_configuration(api):
    response = api.get("/api/wallet")
    assert response.status_code == 400


def test_wallet_status(api, funded, sender):
    data = api.get("/api/wallet").json()
    assert data["address"] == sender.address
    assert data["exists"] is True
    assert data["hasTrustline"] is True
    assert data["balance"] == "100"
    assert data["currency"] == "RLUSD"


def test_balance_invalid_address(api):
    response = api.post("/api/balance", json={"address": "rInvalid"})
    assert response.status_code == 400


def test_balance_of_missing_account(api, receiver):
    data = api.post("/api/balance", json={"address": receiver.address}).json()
    assert data["exists"] is False
    assert data["balance"] == "0"
    assert data["hasTrustline"] is False


def test_balance_is_logged(api, ledger, receiver):
    ledger.add_account(receiver.address, lines=[rlusd_line("12.75")])
    data = api.post("/api/balance", json={"address": receiver.address}).json()
    assert data["balance"] == "12.75"

    logs = api.get("/api/logs").json()["logs"]
    assert logs[0]["type"] == "balance_check"
    assert logs[0]["balance"] == "12.75"


def test_validate(api, sender):
    assert api.post("/api/validate", json={}).status_code == 400
    assert api.post("/api/validate", json={"address": sender.address}).json()["isValid"] is True
    assert api.post("/api/validate", json={"address": "rInvalid"}).json()["isValid"] is False

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def test_trustline_created_once(api, context, ledger, submitter, sender):
    ledger.add_account(sender.address)
    context.replace(context.snapshot.settings, sender)

    first = api.post("/api/trustline", json={"limit": "5000"})
    assert first.status_code == 200
    assert first.json()["created"] is True
    assert first.json()["hash"] == SAMPLE_TX_HASH

    second = api.post("/api/trustline")
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["limit"] == "5000"

    assert len(submitter.submitted) == 1
    assert len(api.get("/api/logs", params={"type": "create_trustline"}).json()["logs"]) == 2


def test_trustline_requires_wallet(api):
    assert api.post("/api/trustline").status_code == 400


def test_send_over_api_limit(api, funded, submitter, receiver):
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "1001"})
    assert response.status_code == 400
    assert "Use CLI for larger amounts" in response.json()["detail"]
    assert submitter.submitted == []


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
def test_send_invalid_amount(api, funded, submitter, receiver, amount):
    response = api.post("/api/send", json={"destination": receiver.address, "amount": amount})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid amount"


def test_send_invalid_destination(api, funded, submitter):
    response = api.post("/api/send", json={"destination": "rInvalid", "amount": "1"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid destination address"


def test_send_insufficient_balance(api, funded, submitter, receiver):
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "500"})
    assert response.status_code == 400
    assert "Available: 100" in response.json()["detail"]

    log = api.get("/api/logs").json()["logs"][0]
    assert log["type"] == "send_payment"
    assert log["success"] is False


def test_send_payment(api, funded, submitter, sender, receiver):
    response = api.post("/api/send", json={
        "destination": receiver.address,
        "amount": "25.5",
        "destinationTag": 7,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["hash"] == SAMPLE_TX_HASH
    assert data["explorerUrl"].endswith(f"/transactions/{SAMPLE_TX_HASH}")
    assert data["log"]["amount"] == "25.5"
    assert data["log"]["destinationTag"] == 7

    tx = submitter.submitted[0]
    assert tx.destination_tag == 7

    logs = api.get("/api/logs", params={"type": "send_payment"}).json()
    assert logs["total"] == 1
    assert logs["logs"][0]["from"] == sender.address
    assert logs["logs"][0]["to"] == receiver.address


def test_send_holds_submit_lock(api, funded, submitter, receiver, monkeypatch):
    held = []
    fake_submit = submitter.submit_and_wait

    async def submit_and_wait(transaction, client):
        held.append(funded.submit_lock.locked())
        return await fake_submit(transaction, client)

    monkeypatch.setattr(xrpl_utils, "submit_and_wait", submit_and_wait)
    assert api.post("/api/send", json={"destination": receiver.address, "amount": "1"}).status_code == 200
    assert held == [True]
    assert not funded.submit_lock.locked()


def test_rejection_is_bad_gateway(api, funded, submitter, receiver):
    submitter.result_code = "tecPATH_DRY"
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "1"})
    assert response.status_code == 502
    assert response.json()["detail"] == "Transaction failed: tecPATH_DRY"

    log = api.get("/api/logs").json()["logs"][0]
    assert log["resultCode"] == "tecPATH_DRY"


def test_unreachable_ledger_is_service_unavailable(api, context, receiver):
    context.client_factory = lambda url: FakeLedgerClient(url, fail_open=True)
    response = api.post("/api/balance", json={"address": receiver.address})
    assert response.status_code == 503

    log = api.get("/api/logs").json()["logs"][0]
    assert log["type"] == "balance_check"
    assert log["success"] is False

# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


def test_export_csv(api, funded, submitter, receiver):
    api.post("/api/send", json={"destination": receiver.address, "amount": "3"})
    response = api.get("/api/logs/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "xrpl-transactions.csv" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0] == "Timestamp,Type,Success,From,To,Amount,Currency,Hash,Error"
    assert ",send_payment,true," in lines[1]


def test_history_loaded_on_startup(tmp_path, ledger):
    settings = Settings(logs_dir=str(tmp_path))
    AppContext(settings).log.record("balance_check", {"address": "rHistory"})

    context = AppContext(settings, client_factory=lambda url: ledger)
    with TestClient(create_app(context)) as client:
        logs = client.get("/api/logs").json()["logs"]
    assert [log["address"] for log in logs] == ["rHistory"]

# ---------------------------------------------------------------------------
# Failure paths and concurrent updates
# ---------------------------------------------------------------------------


def test_records_carry_config(api, ledger, receiver):
    api.post("/api/balance", json={"address": receiver.address})
    log = api.get("/api/logs").json()["logs"][0]
    assert log["config"] == {"issuer": ISSUER, "currency": "RLUSD"}


def test_send_unrepresentable_amount(api, funded, submitter, receiver):
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "0.12345678901234567"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid amount"
    assert submitter.submitted == []


def test_send_transport_failure_is_logged(api, funded, submitter, receiver):
    submitter.raise_error = XRPLException("websocket closed")
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "1"})
    assert response.status_code == 503

    log = api.get("/api/logs").json()["logs"][0]
    assert log["type"] == "send_payment"
    assert log["success"] is False


def test_unexpected_send_failure_is_logged(api, funded, submitter, receiver):
    submitter.raise_error = RuntimeError("boom")
    response = api.post("/api/send", json={"destination": receiver.address, "amount": "1"})
    assert response.status_code == 500

    log = api.get("/api/logs").json()["logs"][0]
    assert log["type"] == "send_payment"
    assert log["success"] is False
    assert log["error"] == "boom"


def test_unexpected_trustline_failure_is_logged(api, context, ledger, submitter, sender):
    ledger.add_account(sender.address)
    context.replace(context.snapshot.settings, sender)
    submitter.raise_error = RuntimeError("boom")

    assert api.post("/api/trustline").status_code == 500
    log = api.get("/api/logs").json()["logs"][0]
    assert log["type"] == "create_trustline"
    assert log["success"] is False


class SlowLedgerClient(FakeLedgerClient):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def request(self, request):
        await asyncio.sleep(self.delay)
        return await super().request(request)


def test_concurrent_config_updates_are_both_kept(tmp_path, sender):
    slow = SlowLedgerClient(delay=0.2)
    slow.add_account(sender.address)
    other_issuer = Wallet.create().address
    context = AppContext(Settings(logs_dir=str(tmp_path)), client_factory=lambda url: slow)
    app = create_app(context)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            async def change_issuer():
                await asyncio.sleep(0.05)
                return await client.post("/api/config", json={"issuer": other_issuer})

            return await asyncio.gather(
                client.post("/api/config", json={"walletSeed": sender.seed}),
                change_issuer(),
            )

    seed_response, issuer_response = asyncio.run(scenario())

    assert seed_response.status_code == 200
    assert issuer_response.status_code == 200
    assert context.snapshot.settings.issuer == other_issuer
    assert context.snapshot.wallet.address == sender.address
