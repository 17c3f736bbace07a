"""
Solana RPC Access

Holds one active RPC client. Calls go through the shared retry policy on the
current endpoint; when retries are exhausted the next endpoint is tried, and
ConnectionExhausted is raised once every endpoint has failed.
"""

import json
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar
import structlog

from solana.rpc.api import Client
from solana.rpc.commitment import Finalized
from solders.pubkey import Pubkey
from solders.signature import Signature

from ..core.errors import ConnectionExhausted
from ..core.retry import RetryPolicy

logger = structlog.get_logger()

T = TypeVar("T")

ClientFactory = Callable[[str, float], Client]


def _default_client(endpoint: str, timeout: float) -> Client:
    return Client(endpoint, timeout=timeout)


class ChainConnection:
    """
    Connection manager with fallback endpoints.

    Usage:
        chain = ChainConnection(["https://rpc.example"], timeout=30)
        tx = chain.get_transaction(signature)
    """

    def __init__(
        self,
        endpoints: List[str],
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._client_factory = client_factory or _default_client
        self._client: Optional[Client] = None
        self._index = 0
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> Optional[str]:
        """Endpoint of the active client, if connected."""
        return self.endpoints[self._index] if self._client is not None else None

    def _connect(self) -> Client:
        errors: Dict[str, str] = {}
        count = len(self.endpoints)
        for offset in range(count):
            index = (self._index + offset) % count
            url = self.endpoints[index]
            client = self._client_factory(url, self.timeout)
            try:
                self.retry_policy.call(client.get_version, operation="rpc_connect")
            except Exception as e:
                logger.warning("rpc_endpoint_failed", endpoint=url, error=str(e))
                errors[url] = str(e)
                continue

            self._client = client
            self._index = index
            logger.info("rpc_connected", endpoint=url, fallback=index != 0)
            return client

        logger.error("rpc_endpoints_exhausted", endpoints=len(self.endpoints))
        raise ConnectionExhausted("All Solana RPC endpoints failed", errors)

    def connection(self) -> Client:
        """Active client, connecting (with fallback) if needed."""
        with self._lock:
            if self._client is not None:
                return self._client
            return self._connect()

    def _rotate(self, failed: Client) -> None:
        with self._lock:
            if self._client is failed:
                self._client = None
                self._index = (self._index + 1) % len(self.endpoints)

    def execute(self, operation: str, fn: Callable[[Client], T]) -> T:
        """Run an RPC call with retry, rotating endpoints on repeated failure."""
        last_error: Optional[Exception] = None
        for _ in range(len(self.endpoints)):
            client = self.connection()
            try:
                return self.retry_policy.call(lambda: fn(client), operation=operation)
            except Exception as e:
                last_error = e
                logger.warning("rpc_call_failed", operation=operation, error=str(e))
                self._rotate(client)

        raise ConnectionExhausted(
            "RPC call failed on every endpoint",
            {"operation": operation, "error": str(last_error)},
        )

    def health_check(self) -> bool:
        try:
            self.execute("get_version", lambda c: c.get_version())
            return True
        except ConnectionExhausted as e:
            logger.error("rpc_health_check_failed", error=str(e))
            return False

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a finalized transaction as parsed JSON.

        Returns None when the transaction is unknown or not yet finalized.
        Raises ValueError for a malformed signature.
        """
        sig = Signature.from_string(signature)
        resp = self.execute(
            "get_transaction",
            lambda c: c.get_transaction(
                sig,
                encoding="jsonParsed",
                commitment=Finalized,
                max_supported_transaction_version=0,
            ),
        )
        if resp.value is None:
            return None
        return json.loads(resp.value.to_json())

    def get_signatures_for_address(self, address: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent finalized signatures touching an account."""
        pubkey = Pubkey.from_string(address)
        resp = self.execute(
            "get_signatures_for_address",
            lambda c: c.get_signatures_for_address(pubkey, limit=limit, commitment=Finalized),
        )
        return [
            {
                "signature": str(s.signature),
                "slot": s.slot,
                "err": s.err,
                "block_time": s.block_time,
            }
            for s in resp.value
        ]

    def start(self) -> None:
        try:
            self.connection()
        except ConnectionExhausted as e:
            logger.error("rpc_start_failed", error=str(e))

    def shutdown(self) -> None:
        with self._lock:
            self._client = None
        logger.info("rpc_connection_closed")
