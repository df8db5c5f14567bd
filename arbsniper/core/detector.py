"""Arbitrage opportunity detection for cross-venue trading."""

from typing import List, Optional

from loguru import logger

from ..config import DetectorConfig
from ..venues.base import Quote
from .types import Opportunity, Snapshot, TradeDirection
from .utils import now_ms as wall_clock_ms


class OpportunityDetector:
    """Detects arbitrage opportunities between venues.

    Detection is a pure function of the snapshot, the configuration and the
    reference time: the detector keeps no state between calls.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()

    def detect(self, snapshot: Snapshot, config: Optional[DetectorConfig] = None,
               now_ms: Optional[int] = None) -> List[Opportunity]:
        """Detect opportunities, ranked by profit percentage (highest first)."""
        config = config or self.config
        now = now_ms if now_ms is not None else wall_clock_ms()
        opportunities: List[Opportunity] = []

        for instrument, quotes in snapshot.quotes.items():
            # Need at least 2 venues to compare
            if len(quotes) < 2:
                continue

            for i in range(len(quotes)):
                for j in range(i + 1, len(quotes)):
                    quote_i, quote_j = quotes[i], quotes[j]

                    if not (self._is_fresh(quote_i, now, config) and self._is_fresh(quote_j, now, config)):
                        continue

                    # Buy at the cheap venue's ask, sell at the rich venue's bid
                    for cheap, rich in ((quote_i, quote_j), (quote_j, quote_i)):
                        if rich.bid <= cheap.ask:
                            continue
                        opportunity = self._evaluate(
                            instrument, TradeDirection.BUY,
                            source=cheap, target=rich,
                            source_price=cheap.ask, target_price=rich.bid,
                            entry_price=cheap.ask, profit_per_unit=rich.bid - cheap.ask,
                            now=now, config=config,
                        )
                        if opportunity:
                            opportunities.append(opportunity)

        # Stable sort keeps discovery order for ties
        opportunities.sort(key=lambda x: x.profit_percentage, reverse=True)

        if config.max_opportunities > 0:
            opportunities = opportunities[:config.max_opportunities]

        if opportunities:
            best = opportunities[0]
            logger.debug(f"Detected {len(opportunities)} opportunities, best {best.instrument} "
                         f"{best.source_venue}->{best.target_venue} {best.profit_percentage:.3f}%")

        return opportunities

    @staticmethod
    def _is_fresh(quote: Quote, now: int, config: DetectorConfig) -> bool:
        """Check the quote is not older than the max age."""
        return quote.age_ms(now) <= config.max_quote_age_ms

    @staticmethod
    def _evaluate(instrument: str, direction: TradeDirection, source: Quote, target: Quote,
                  source_price: float, target_price: float, entry_price: float,
                  profit_per_unit: float, now: int, config: DetectorConfig) -> Optional[Opportunity]:
        """Apply the profitability filters to one direction of a venue pair."""
        if entry_price <= 0:
            return None

        profit_percentage = profit_per_unit / entry_price * 100
        if profit_percentage < config.min_profit_threshold_pct:
            return None

        trade_size = config.trade_size_usd / entry_price
        estimated_profit = profit_per_unit * trade_size - config.gas_cost_usd
        if estimated_profit <= 0:
            return None

        return Opportunity(
            source_venue=source.venue,
            target_venue=target.venue,
            instrument=instrument,
            direction=direction,
            source_price=source_price,
            target_price=target_price,
            profit_percentage=profit_percentage,
            estimated_profit=estimated_profit,
            trade_size=trade_size,
            detected_at=now,
        )