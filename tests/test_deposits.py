"""
Tests for deposit verification and the deposit service
"""

from decimal import Decimal

import pytest
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from burn_rail.billing.deposits import DepositService
from burn_rail.chain.verifier import TransactionVerifier
from burn_rail.core.errors import DuplicateTransaction, VerificationFailed

from conftest import TOKEN_MINT, new_wallet, token_balance, transfer_tx


@pytest.fixture
def verifier(fake_chain):
    return TransactionVerifier(fake_chain, token_decimals=6)


@pytest.fixture
def deposits(ledger, verifier, fake_chain):
    return DepositService(ledger, verifier, fake_chain, TOKEN_MINT)


class TestTransactionVerifier:
    """Verification from pre/post token balances."""

    def test_valid_transfer(self, verifier, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(new_wallet(), wallet, 25_500_000)

        result = verifier.verify_deposit("SIG1", wallet, TOKEN_MINT)

        assert result.valid is True
        assert result.actual_amount == Decimal("25.5")

    def test_missing_transaction(self, verifier, wallet):
        result = verifier.verify_deposit("UNKNOWN", wallet, TOKEN_MINT)

        assert result.valid is False
        assert "not found" in result.error

    def test_failed_transaction(self, verifier, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(
            new_wallet(), wallet, 1_000_000, err={"InstructionError": [0, "Custom"]}
        )

        result = verifier.verify_deposit("SIG1", wallet, TOKEN_MINT)

        assert result.valid is False
        assert "failed" in result.error

    def test_outgoing_transfer_is_invalid(self, verifier, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(wallet, new_wallet(), 1_000_000)

        result = verifier.verify_deposit("SIG1", wallet, TOKEN_MINT)

        assert result.valid is False

    def test_other_mint_ignored(self, verifier, fake_chain, wallet):
        other_mint = new_wallet()
        fake_chain.transactions["SIG1"] = {
            "meta": {
                "err": None,
                "preTokenBalances": [],
                "postTokenBalances": [token_balance(1, wallet, 5_000_000, mint=other_mint)],
            },
        }

        assert verifier.verify_deposit("SIG1", wallet, TOKEN_MINT).valid is False

    def test_new_token_account_counts_from_zero(self, verifier, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = {
            "meta": {
                "err": None,
                "preTokenBalances": [],
                "postTokenBalances": [token_balance(3, wallet, 2_000_000)],
            },
        }

        result = verifier.verify_deposit("SIG1", wallet, TOKEN_MINT)

        assert result.valid is True
        assert result.actual_amount == Decimal("2")

    def test_expected_amount_checked(self, verifier, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(new_wallet(), wallet, 10_000_000)

        assert verifier.verify_deposit("SIG1", wallet, TOKEN_MINT, expected_amount="10").valid is True
        assert verifier.verify_deposit("SIG1", wallet, TOKEN_MINT, expected_amount="10.000001").valid is True

        mismatch = verifier.verify_deposit("SIG1", wallet, TOKEN_MINT, expected_amount="11")
        assert mismatch.valid is False
        assert mismatch.actual_amount == Decimal("10")
        assert "mismatch" in mismatch.error


class TestDepositService:
    """Verify-then-credit."""

    def test_deposit_credits_verified_amount(self, deposits, fake_chain, ledger, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(new_wallet(), wallet, 7_000_000)

        balance = deposits.deposit(wallet, "SIG1")

        assert balance.current_balance(6) == Decimal("7")
        assert ledger.is_recorded("SIG1")

    def test_duplicate_rejected_before_rpc(self, deposits, fake_chain, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(new_wallet(), wallet, 7_000_000)
        deposits.deposit(wallet, "SIG1")
        fake_chain.requests.clear()

        with pytest.raises(DuplicateTransaction):
            deposits.deposit(wallet, "SIG1")

        assert fake_chain.requests == []

    def test_invalid_transaction_rejected(self, deposits, ledger, wallet):
        with pytest.raises(VerificationFailed):
            deposits.deposit(wallet, "MISSING")

        assert ledger.get_balance(wallet).current_units == 0

    def test_claimed_amount_must_match(self, deposits, fake_chain, ledger, wallet):
        fake_chain.transactions["SIG1"] = transfer_tx(new_wallet(), wallet, 7_000_000)

        with pytest.raises(VerificationFailed):
            deposits.deposit(wallet, "SIG1", amount=Decimal("70"))

        assert ledger.is_recorded("SIG1") is False

    def test_token_account_is_associated_account(self, deposits, wallet):
        expected = get_associated_token_address(Pubkey.from_string(wallet), Pubkey.from_string(TOKEN_MINT))

        assert deposits.token_account(wallet) == str(expected)

    def test_token_account_rejects_bad_address(self, deposits):
        with pytest.raises(VerificationFailed):
            deposits.token_account("not-a-wallet")

    def test_scan_credits_new_deposits_once(self, deposits, fake_chain, ledger, wallet):
        sender = new_wallet()
        fake_chain.transactions["SIG-A"] = transfer_tx(sender, wallet, 1_000_000)
        fake_chain.transactions["SIG-B"] = transfer_tx(sender, wallet, 2_000_000)
        fake_chain.transactions["SIG-OUT"] = transfer_tx(wallet, sender, 500_000)
        fake_chain.signatures[deposits.token_account(wallet)] = [
            {"signature": "SIG-A", "err": None},
            {"signature": "SIG-B", "err": None},
            {"signature": "SIG-OUT", "err": None},
            {"signature": "SIG-FAILED", "err": {"InstructionError": [0, "Custom"]}},
        ]

        first = deposits.scan(wallet)

        assert {c["signature"] for c in first["credited"]} == {"SIG-A", "SIG-B"}
        assert first["already_processed"] == 0
        assert ledger.get_balance(wallet).current_balance(6) == Decimal("3")

        second = deposits.scan(wallet)

        assert second["credited"] == []
        assert second["already_processed"] == 2
        assert ledger.get_balance(wallet).current_balance(6) == Decimal("3")
