"""USD spot prices from CoinGecko.

Prices are reference data for the ledger only. Any failure returns None,
it never blocks a trade.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

COINGECKO_API = "https://api.coingecko.com/api/v3"


class CoinGeckoPriceFeed:
    """Native asset USD price lookup."""

    def __init__(
        self,
        base_url: str = COINGECKO_API,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def get_usd_price(self, asset_id: str) -> Optional[Decimal]:
        """Get the USD price of an asset by CoinGecko id.

        Returns:
            Price, or None if the feed is unavailable or has no price
        """
        try:
            if self._client is not None:
                response = await self._fetch(self._client, asset_id)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._fetch(client, asset_id)
        except httpx.HTTPError as e:
            logger.warning(f"Price fetch error for {asset_id}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"Price feed returned HTTP {response.status_code} for {asset_id}")
            return None

        try:
            price = response.json().get(asset_id, {}).get("usd")
        except (ValueError, AttributeError):
            logger.warning(f"Price feed returned a malformed body for {asset_id}")
            return None

        if price is None:
            return None
        value = None
        if isinstance(price, (int, float, str)) and not isinstance(price, bool):
            try:
                value = Decimal(str(price))
            except ArithmeticError:
                value = None
        if value is None or not value.is_finite() or value <= 0:
            logger.warning(f"Price feed returned an unusable price for {asset_id}: {price!r}")
            return None
        return value

    async def _fetch(self, client: httpx.AsyncClient, asset_id: str) -> httpx.Response:
        return await client.get(
            f"{self.base_url}/simple/price",
            params={"ids": asset_id, "vs_currencies": "usd"},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
