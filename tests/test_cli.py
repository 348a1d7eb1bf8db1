"""
Tests for the rlusd-wallet and rlusd-send command line flows
"""

import asyncio
import json

import pytest

from rlusd_toolkit.config import Settings
from rlusd_toolkit.exceptions import ValidationError
from rlusd_toolkit.setup_scripts.create_wallet import parse_args, quick_wallet, setup_existing_wallet
from rlusd_toolkit.wallets import wallet_for_address
from rlusd_toolkit.xrpl_operations.send_token import print_final_balances
from rlusd_toolkit.xrpl_utils import PaymentResult

from conftest import SAMPLE_TX_HASH, rlusd_line


def test_parse_subcommands():
    assert parse_args([]).command is None
    assert parse_args(["check", "rAddr"]).address == "rAddr"

    quick = parse_args(["quick"])
    assert quick.command == "quick"
    assert quick.save_plaintext is False
    assert quick.format == "json"

    quick = parse_args(["quick", "--save-plaintext", "--format", "txt"])
    assert quick.save_plaintext is True
    assert quick.format == "txt"

    setup = parse_args(["setup", "rAddr"])
    assert setup.command == "setup"
    assert setup.address == "rAddr"


def test_setup_requires_address():
    with pytest.raises(SystemExit):
        parse_args(["setup"])


def test_wallet_for_address(sender, receiver):
    assert wallet_for_address(sender.seed, sender.address).address == sender.address
    with pytest.raises(ValidationError, match="Seed does not match the provided address"):
        wallet_for_address(sender.seed, receiver.address)

# ---------------------------------------------------------------------------
# quick
# ---------------------------------------------------------------------------


def test_quick_does_not_save_by_default(tmp_path, capsys):
    wallets_dir = tmp_path / "wallets"
    assert quick_wallet(Settings(wallets_dir=str(wallets_dir))) == 0

    assert not wallets_dir.exists()
    out = capsys.readouterr().out
    assert "NOT saved" in out
    assert "rlusd-wallet setup r" in out


def test_quick_saves_with_opt_in(tmp_path, capsys):
    assert quick_wallet(Settings(wallets_dir=str(tmp_path)), save_plaintext=True) == 0

    files = list(tmp_path.iterdir())
    assert len(files) == 1
    data = json.loads(files[0].read_text())
    assert f"rlusd-wallet setup {data['address']}" in capsys.readouterr().out

# ---------------------------------------------------------------------------
# setup <address>
# ---------------------------------------------------------------------------


def _setup(ledger, address, seed):
    return asyncio.run(setup_existing_wallet(
        Settings(), address, read_seed=lambda prompt: seed, client_factory=lambda url: ledger
    ))


def test_setup_rejects_mismatched_seed(ledger, submitter, sender, receiver, capsys):
    ledger.add_account(sender.address)
    assert _setup(ledger, sender.address, receiver.seed) == 1
    assert "Seed does not match the provided address" in capsys.readouterr().out
    assert submitter.submitted == []


def test_setup_requires_activated_account(ledger, submitter, sender, capsys):
    assert _setup(ledger, sender.address, sender.seed) == 1
    assert "not activated" in capsys.readouterr().out
    assert submitter.submitted == []


def test_setup_rejects_invalid_address(ledger, submitter, sender):
    assert _setup(ledger, "rInvalid", sender.seed) == 1
    assert ledger.requests == []


def test_setup_creates_trustline(ledger, submitter, sender, capsys):
    ledger.add_account(sender.address)
    assert _setup(ledger, sender.address, sender.seed) == 0
    assert len(submitter.submitted) == 1
    assert SAMPLE_TX_HASH in capsys.readouterr().out


def test_setup_with_existing_trustline(ledger, submitter, sender, capsys):
    ledger.add_account(sender.address, lines=[rlusd_line("0", limit="300")])
    assert _setup(ledger, sender.address, sender.seed) == 0
    assert submitter.submitted == []
    assert "already exists (limit 300)" in capsys.readouterr().out

# ---------------------------------------------------------------------------
# rlusd-send output
# ---------------------------------------------------------------------------


def _payment(sender_balance, destination_balance):
    return PaymentResult(
        tx_hash=SAMPLE_TX_HASH, ledger_index=1, result_code="tesSUCCESS", fee="12",
        sender="rA", destination="rB", amount="10", currency="RLUSD", issuer="rI",
        sender_balance=sender_balance, destination_balance=destination_balance,
    )


def test_final_balances_partial(capsys):
    print_final_balances(_payment("90", None), "RLUSD")
    out = capsys.readouterr().out
    assert "Sender:    90 RLUSD" in out
    assert "Recipient: unavailable" in out
    assert "None" not in out


def test_final_balances_skipped_when_unknown(capsys):
    print_final_balances(_payment(None, None), "RLUSD")
    assert capsys.readouterr().out == ""
