"""
Market price feed backed by the Jupiter price API.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
import httpx
import structlog

from ..core.errors import ConfigurationError, PriceUnavailable

logger = structlog.get_logger()


class JupiterPriceFeed:
    """
    Fetches the USD price of the configured token mint.

    Accepts both the v4 shape ({"data": {mint: {"price": ...}}}) and the
    newer flat shape ({mint: {"usdPrice": ...}}).
    """

    def __init__(
        self,
        api_url: str,
        token_mint_address: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token_mint_address = token_mint_address
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

        if not self.token_mint_address:
            logger.warning("price_feed_mint_not_configured")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key and "api.jup.ag" in self.api_url:
            headers["X-API-Key"] = self.api_key
        return headers

    def _extract(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or not payload:
            raise PriceUnavailable("No data received from price API")
        container = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        entry = container.get(self.token_mint_address)
        if not entry:
            raise PriceUnavailable(
                "Price data not found for token",
                {"mint": self.token_mint_address},
            )
        value = entry.get("usdPrice", entry.get("price"))
        if value is None:
            raise PriceUnavailable("Price field missing in price API response")
        return value

    def fetch_price(self) -> Decimal:
        """Fetch the current USD price. Raises PriceUnavailable on any failure."""
        if not self.token_mint_address:
            raise ConfigurationError("TOKEN_MINT_ADDRESS not configured")

        try:
            response = self._client.get(
                self.api_url,
                params={"ids": self.token_mint_address},
                headers=self._headers(),
            )
            response.raise_for_status()
            value = self._extract(response.json())
        except httpx.HTTPError as e:
            raise PriceUnavailable("Price API request failed", {"error": str(e)})
        except ValueError as e:
            raise PriceUnavailable("Price API returned invalid JSON", {"error": str(e)})

        try:
            price = Decimal(str(value))
        except InvalidOperation:
            raise PriceUnavailable("Invalid price value", {"value": value})
        if not price.is_finite() or price <= 0:
            raise PriceUnavailable("Invalid price value", {"value": value})
        return price

    def close(self) -> None:
        self._client.close()
