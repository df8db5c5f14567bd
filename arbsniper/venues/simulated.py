"""Simulated quote source for paper trading and demos.

Each simulated venue random-walks a mid price per instrument around a shared
base price, shifted by a per-venue bias so that venues occasionally disagree
by more than the profit threshold.
"""

import random
import time
from typing import Any, Dict, List, Optional

from loguru import logger

from .base import PriceData, QuoteSource, register_venue

DEFAULT_BASE_PRICES = {
    "SOL/USDC": 150.0,
    "BTC/USDC": 60000.0,
    "ETH/USDC": 3000.0,
}


@register_venue("simulated")
class SimulatedQuoteSource(QuoteSource):
    """Random-walk quote source.

    Options (``settings["options"]``):
        base_prices: instrument -> starting mid price
        bias_bps: constant offset applied to this venue's mid
        volatility_bps: std-dev of each random-walk step
        spread_bps: quoted bid/ask spread
        failure_rate: probability that a fetch returns None
        seed: random seed
    """

    def __init__(self, name: str, settings: Optional[Dict[str, Any]] = None):
        super().__init__(name, settings)
        options = self.settings.get("options") or {}
        self.base_prices: Dict[str, float] = dict(options.get("base_prices") or DEFAULT_BASE_PRICES)
        self.bias_bps = float(options.get("bias_bps", 0.0))
        self.volatility_bps = float(options.get("volatility_bps", 5.0))
        self.spread_bps = float(options.get("spread_bps", 4.0))
        self.failure_rate = float(options.get("failure_rate", 0.0))
        self._rng = random.Random(options.get("seed"))

        instruments = self.settings.get("instruments") or list(self.base_prices)
        self._supported = [symbol for symbol in instruments if symbol in self.base_prices]
        self._mids: Dict[str, float] = {}

    async def initialize(self) -> bool:
        self._mids = {
            symbol: self.base_prices[symbol] * (1 + self.bias_bps / 10000)
            for symbol in self._supported
        }
        self._initialized = bool(self._mids)
        logger.info(f"Simulated venue {self.name} ready ({len(self._mids)} instruments, bias {self.bias_bps:+.1f} bps)")
        return self._initialized

    async def list_supported_instruments(self) -> List[str]:
        return list(self._supported)

    async def get_price(self, instrument: str) -> Optional[PriceData]:
        """Advance the random walk one step and quote around the new mid."""
        mid = self._mids.get(instrument)
        if mid is None:
            return None

        if self.failure_rate and self._rng.random() < self.failure_rate:
            return None

        step = self._rng.gauss(0.0, self.volatility_bps / 10000)
        mid *= 1 + step
        self._mids[instrument] = mid

        half_spread = mid * self.spread_bps / 20000
        return PriceData(
            bid=mid - half_spread,
            ask=mid + half_spread,
            last=mid,
            timestamp=int(time.time() * 1000),
        )
