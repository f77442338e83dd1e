"""ORE and SOL USD quotes from the Jupiter price API."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass

import httpx

from . import abi
from .errors import FetchError

logger = logging.getLogger(__name__)

JUPITER_PRICE_URL = "https://lite-api.jup.ag/price/v3"
CACHE_TTL = 10.0  # seconds, keeps us under the API rate limit


@dataclass(frozen=True)
class PriceQuote:
    asset_price: float  # ORE in USD
    base_price: float   # SOL in USD
    fetched_at: float

    def is_fresh(self, now: float, ttl: float = CACHE_TTL) -> bool:
        return now - self.fetched_at < ttl


class PriceClient:
    def __init__(self, http: httpx.AsyncClient, url: str = JUPITER_PRICE_URL,
                 asset_mint: str = abi.ORE_MINT, base_mint: str = abi.SOL_MINT,
                 cache_ttl: float = CACHE_TTL, clock=time.monotonic):
        self.http = http
        self.url = url
        self.asset_mint = asset_mint
        self.base_mint = base_mint
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._quote: PriceQuote | None = None
        self._lock = asyncio.Lock()

    @property
    def quote(self) -> PriceQuote | None:
        """Last successful quote, fresh or not."""
        return self._quote

    async def get_prices(self) -> tuple[float, float]:
        """Fetch (ore_usd, sol_usd). No caching."""
        params = {"ids": f"{self.base_mint},{self.asset_mint}"}
        try:
            resp = await self.http.get(self.url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise FetchError(FetchError.NETWORK, f"price API: {e}") from e
        except ValueError as e:
            raise FetchError(FetchError.NETWORK, f"price API returned invalid JSON: {e}") from e

        asset = _usd_price(data, self.asset_mint)
        base = _usd_price(data, self.base_mint)
        logger.debug("prices ore=%.4f sol=%.4f", asset, base)
        return asset, base

    async def get_cached_prices(self, force: bool = False) -> tuple[float, float]:
        """Prices from cache if younger than cache_ttl, else refetched.

        Concurrent callers share one refresh. force=True ignores the TTL.
        """
        async with self._lock:
            quote = self._quote
            if not force and quote is not None and quote.is_fresh(self.clock(), self.cache_ttl):
                return quote.asset_price, quote.base_price
            asset, base = await self.get_prices()
            self._quote = PriceQuote(asset, base, self.clock())
            return asset, base


def _usd_price(data, mint: str) -> float:
    info = data.get(mint) if isinstance(data, dict) else None
    if not isinstance(info, dict) or "usdPrice" not in info:
        raise FetchError(FetchError.MISSING_QUOTE, f"no quote for {mint}")
    try:
        price = float(info["usdPrice"])
    except (TypeError, ValueError):
        raise FetchError(FetchError.MISSING_QUOTE, f"bad quote for {mint}: {info['usdPrice']!r}") from None
    if not math.isfinite(price) or price <= 0:
        raise FetchError(FetchError.MISSING_QUOTE, f"non-positive quote for {mint}: {price}")
    return price
