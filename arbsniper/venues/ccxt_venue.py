"""ccxt-backed quote source."""

import time
from typing import Any, Dict, List, Optional

import ccxt
import ccxt.pro as ccxtpro
from loguru import logger

from .base import PriceData, QuoteSource, register_venue


@register_venue("ccxt")
class CcxtQuoteSource(QuoteSource):
    """Quote source polling ccxt tickers on a public (keyless) client."""

    def __init__(self, name: str, settings: Optional[Dict[str, Any]] = None, client: Any = None):
        super().__init__(name, settings)
        self.exchange_id = self.settings.get("exchange_id") or name
        self.instruments: List[str] = list(self.settings.get("instruments") or [])
        self.client = client
        self._supported: List[str] = []

    def _init_public_client(self):
        """Initialize public client (no keys)."""
        exchange_class = getattr(ccxtpro, self.exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"ccxt has no exchange '{self.exchange_id}'")

        options = {"defaultType": "spot"}
        options.update(self.settings.get("options") or {})
        return exchange_class({
            "enableRateLimit": True,
            "timeout": 10000,
            "options": options,
        })

    async def initialize(self) -> bool:
        """Load markets and resolve the instruments this venue quotes."""
        try:
            if self.client is None:
                self.client = self._init_public_client()

            markets = await self.client.load_markets()

            if self.instruments:
                missing = [symbol for symbol in self.instruments if symbol not in markets]
                for symbol in missing:
                    logger.warning(f"{self.name}: symbol not listed: {symbol}")
                self._supported = [symbol for symbol in self.instruments if symbol in markets]
            else:
                self._supported = sorted(markets)

            self._initialized = bool(self._supported)
            if self._initialized:
                logger.info(f"{self.name} connected via ccxt '{self.exchange_id}' ({len(self._supported)} instruments)")
            else:
                logger.error(f"{self.name}: no supported instruments")
            return self._initialized

        except Exception as e:
            logger.error(f"Failed to initialize {self.name}: {e}")
            return False

    async def list_supported_instruments(self) -> List[str]:
        return list(self._supported)

    async def get_price(self, instrument: str) -> Optional[PriceData]:
        """Fetch the current ticker for an instrument."""
        if self.client is None:
            return None

        try:
            ticker = await self.client.fetch_ticker(instrument)
        except ccxt.BaseError as e:
            logger.warning(f"{self.name}: ticker fetch failed for {instrument}: {e}")
            return None

        if not ticker or ticker.get("bid") is None or ticker.get("ask") is None:
            return None

        last = ticker.get("last")
        return PriceData(
            bid=float(ticker["bid"]),
            ask=float(ticker["ask"]),
            last=float(last) if last is not None else None,
            timestamp=ticker.get("timestamp") or int(time.time() * 1000),
        )

    async def close(self) -> None:
        """Close the ccxt client."""
        if self.client is not None:
            try:
                await self.client.close()
            except Exception as e:
                logger.error(f"Error closing {self.name}: {e}")
        self._initialized = False
