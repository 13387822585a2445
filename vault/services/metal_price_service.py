import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.config import settings
from vault.core.exceptions import ConfigurationError, MetalPriceError
from vault.crud.metal_price import metal_price_crud
from vault.models.subscription import MetalType
from vault.utils.utils import utcnow

logger = logging.getLogger(__name__)

METAL_CODES: Dict[MetalType, str] = {
    MetalType.GOLD: "XAU",
    MetalType.SILVER: "XAG",
}


@dataclass
class MetalPriceSyncResult:
    gold_price: float
    silver_price: float
    timestamp: datetime


def start_of_yesterday(now: datetime) -> datetime:
    return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


class MetalPriceService:
    """Pulls daily gold/silver quotes from goldapi.io and caches them in metal_prices"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_lookback_days: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.api_key = api_key if api_key is not None else settings.gold_api_key
        self.base_url = (base_url or settings.gold_api_base_url).rstrip("/")
        self.max_lookback_days = max_lookback_days or settings.metal_price_max_lookback_days
        self.transport = transport
        self.clock = clock
        self.timeout = 15

    def _build_url(self, metal: MetalType, day: str) -> str:
        return f"{self.base_url}/{METAL_CODES[metal]}/USD/{day}"

    @staticmethod
    def _extract_price(payload: dict, metal: MetalType) -> Optional[float]:
        # Gold is quoted per gram (24k), silver per troy ounce
        value = payload.get("price_gram_24k") if metal == MetalType.GOLD else payload.get("price")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return None

    async def _fetch_price(self, client: httpx.AsyncClient, metal: MetalType, day: str) -> float:
        response = await client.get(
            self._build_url(metal, day),
            headers={"x-access-token": self.api_key, "Content-Type": "application/json"},
        )
        if response.status_code != 200:
            message = f"Gold API request for {metal.value} failed with status {response.status_code}"
            try:
                error = response.json().get("error")
                if error:
                    message = error
            except ValueError:
                pass
            if "monthly quota" in message:
                message = "Monthly API quota exceeded. Please upgrade your Gold API plan."
            raise MetalPriceError(message)

        price = self._extract_price(response.json(), metal)
        if price is None:
            raise MetalPriceError(f"Invalid {metal.value} data returned from Gold API")
        return price

    async def fetch_price_with_retry(self, metal: MetalType) -> float:
        """Walk back one calendar day at a time until a non-zero quote turns up"""
        if not self.api_key:
            raise ConfigurationError("Gold API key is not configured")

        now = self.clock()
        last_error: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for days_ago in range(1, self.max_lookback_days + 1):
                day = (now - timedelta(days=days_ago)).strftime("%Y%m%d")
                try:
                    price = await self._fetch_price(client, metal, day)
                except (MetalPriceError, httpx.HTTPError, ValueError) as e:
                    last_error = e
                    continue
                if price == 0:
                    last_error = MetalPriceError(f"Zero price returned for {metal.value} on date {day}")
                    continue
                return price

        detail = f": {last_error}" if last_error else ""
        raise MetalPriceError(
            f"Unable to fetch valid {metal.value} price after trying {self.max_lookback_days} days{detail}"
        )

    async def sync_prices(self, db: AsyncSession) -> MetalPriceSyncResult:
        """Fetch both metals concurrently and upsert them"""
        gold_price, silver_price = await asyncio.gather(
            self.fetch_price_with_retry(MetalType.GOLD),
            self.fetch_price_with_retry(MetalType.SILVER),
        )
        timestamp = self.clock()
        await metal_price_crud.upsert(db, metal_symbol=MetalType.GOLD.value, price=gold_price, last_updated=timestamp)
        await metal_price_crud.upsert(db, metal_symbol=MetalType.SILVER.value, price=silver_price, last_updated=timestamp)
        logger.info(f"💰 Metal prices updated | gold: ${gold_price}/g | silver: ${silver_price}/oz")
        return MetalPriceSyncResult(gold_price=gold_price, silver_price=silver_price, timestamp=timestamp)

    async def ensure_fresh(self, db: AsyncSession) -> bool:
        """Refresh when a price is missing or older than the start of yesterday (UTC)"""
        boundary = start_of_yesterday(self.clock())
        prices = {price.metal_symbol: price for price in await metal_price_crud.get_all(db)}
        stale = [
            metal.value for metal in MetalType
            if metal.value not in prices or prices[metal.value].last_updated < boundary
        ]
        if not stale:
            logger.info("Metal prices are current; skipping startup refresh")
            return False

        logger.info(f"🔄 Metal prices stale or missing for {', '.join(stale)}; refreshing")
        await self.sync_prices(db)
        return True


async def get_metal_price(db: AsyncSession, metal: MetalType) -> Optional[float]:
    """Cached price per base unit, or None when no usable quote exists"""
    record = await metal_price_crud.get_by_symbol(db, metal.value)
    if not record or record.price is None or record.price <= 0:
        return None
    return record.price


def get_metal_price_service(request: Request) -> MetalPriceService:
    """Dependency returning the MetalPriceService built at startup"""
    service = getattr(request.app.state, "metal_price_service", None)
    if service is None:
        service = MetalPriceService()
        request.app.state.metal_price_service = service
    return service
