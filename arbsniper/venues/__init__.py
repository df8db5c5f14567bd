"""Quote venues for cross-venue arbitrage."""

from .base import PriceData, Quote, QuoteSource, VENUE_TYPES, create_quote_source, register_venue
from .ccxt_venue import CcxtQuoteSource
from .simulated import SimulatedQuoteSource

__all__ = [
    'PriceData',
    'Quote',
    'QuoteSource',
    'VENUE_TYPES',
    'create_quote_source',
    'register_venue',
    'CcxtQuoteSource',
    'SimulatedQuoteSource'
]
