"""
Pytest Configuration and Fixtures
"""

import os
import sys
import tempfile
import threading
from decimal import Decimal

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from solders.keypair import Keypair  # noqa: E402

from burn_rail.billing.ledger import BalanceLedger  # noqa: E402
from burn_rail.config import Settings  # noqa: E402
from burn_rail.core.errors import PriceUnavailable, SettlementExecutionFailed  # noqa: E402
from burn_rail.persistence.database import Database  # noqa: E402
from burn_rail.persistence.repository import UsageRepository, WalletRepository  # noqa: E402

TOKEN_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
API_KEY = "test-key-12345"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePriceFeed:
    """Price feed returning queued prices; an exception in the queue is raised."""

    def __init__(self, *prices):
        self.prices = list(prices)
        self.calls = 0
        self.closed = False

    def fetch_price(self) -> Decimal:
        self.calls += 1
        if not self.prices:
            raise PriceUnavailable("feed down")
        value = self.prices.pop(0)
        if isinstance(value, Exception):
            raise value
        return Decimal(str(value))

    def close(self) -> None:
        self.closed = True


class FakeSubmitter:
    """Settlement submitter that records calls and can fail or block."""

    def __init__(self, fail: bool = False, gate: threading.Event = None):
        self.fail = fail
        self.gate = gate
        self.calls = []
        self._lock = threading.Lock()

    def submit_settlement(self, burn_units: int, treasury_units: int) -> str:
        with self._lock:
            self.calls.append((burn_units, treasury_units))
            number = len(self.calls)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise SettlementExecutionFailed("simulated chain failure")
        return f"SIG{number:04d}"


def token_balance(index: int, owner: str, units: int, mint: str = TOKEN_MINT, decimals: int = 6) -> dict:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(units), "decimals": decimals},
    }


def transfer_tx(sender: str, receiver: str, units: int, receiver_before: int = 0, err=None) -> dict:
    """Parsed transaction moving `units` from sender to receiver."""
    return {
        "slot": 1,
        "meta": {
            "err": err,
            "preTokenBalances": [
                token_balance(1, sender, 10_000_000_000),
                token_balance(2, receiver, receiver_before),
            ],
            "postTokenBalances": [
                token_balance(1, sender, 10_000_000_000 - units),
                token_balance(2, receiver, receiver_before + units),
            ],
        },
    }


class FakeChain:
    """In-memory chain: finalized transactions and signature lists by address."""

    endpoint = "fake://rpc"

    def __init__(self):
        self.transactions = {}
        self.signatures = {}
        self.requests = []
        self.healthy = True

    def get_transaction(self, signature: str):
        self.requests.append(signature)
        return self.transactions.get(signature)

    def get_signatures_for_address(self, address: str, limit: int = 20):
        return self.signatures.get(address, [])[:limit]

    def health_check(self) -> bool:
        return self.healthy

    def start(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


def new_wallet() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}", timeout=10.0)
    db.initialize()

    yield db

    db.close()
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass


@pytest.fixture
def ledger(temp_db):
    return BalanceLedger(WalletRepository(temp_db), UsageRepository(temp_db), token_decimals=6)


@pytest.fixture
def wallet():
    return new_wallet()


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def settings(temp_db):
    return Settings(
        database_url=temp_db.database_url,
        token_mint_address=TOKEN_MINT,
        treasury_wallet_address=new_wallet(),
        api_key=API_KEY,
    )
