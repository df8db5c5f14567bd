"""Base quote source interface for cross-venue arbitrage."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from loguru import logger

from ..errors import ConfigurationError


@dataclass(frozen=True)
class PriceData:
    """Raw top-of-book price returned by a quote source."""
    bid: float
    ask: float
    timestamp: int
    last: Optional[float] = None


@dataclass(frozen=True)
class Quote:
    """Market quote for an instrument on a venue."""
    venue: str
    instrument: str
    bid: float
    ask: float
    observed_at: int
    last: Optional[float] = None

    @property
    def spread_bps(self) -> float:
        """Calculate spread in basis points."""
        if self.bid <= 0 or self.ask <= 0:
            return float('inf')
        return ((self.ask - self.bid) / self.bid) * 10000

    @property
    def mid_price(self) -> float:
        """Calculate mid price."""
        return (self.bid + self.ask) / 2

    def age_ms(self, now_ms: int) -> int:
        """Age of the quote at now_ms."""
        return now_ms - self.observed_at


class QuoteSource(ABC):
    """Venue capability that provides quotes.

    Implementations must not raise for recoverable errors; get_price returns
    None instead.
    """

    def __init__(self, name: str, settings: Optional[Dict[str, Any]] = None):
        self.name = name
        self.settings = settings or {}
        self._initialized = False

    @abstractmethod
    async def initialize(self) -> bool:
        """Prepare the source. Returns False when the venue is unusable."""
        pass

    @abstractmethod
    async def list_supported_instruments(self) -> List[str]:
        """Instruments this venue can quote."""
        pass

    @abstractmethod
    async def get_price(self, instrument: str) -> Optional[PriceData]:
        """Current top of book for an instrument, or None."""
        pass

    async def close(self) -> None:
        """Release venue resources."""
        pass

    def is_initialized(self) -> bool:
        """Check if the source initialized successfully."""
        return self._initialized


VENUE_TYPES: Dict[str, Type[QuoteSource]] = {}


def register_venue(kind: str) -> Callable[[Type[QuoteSource]], Type[QuoteSource]]:
    """Class decorator registering a QuoteSource implementation under a type name."""
    def decorator(cls: Type[QuoteSource]) -> Type[QuoteSource]:
        if kind in VENUE_TYPES and VENUE_TYPES[kind] is not cls:
            logger.warning(f"Venue type '{kind}' re-registered by {cls.__name__}")
        VENUE_TYPES[kind] = cls
        return cls
    return decorator


def create_quote_source(name: str, kind: str, settings: Optional[Dict[str, Any]] = None) -> QuoteSource:
    """Instantiate a registered quote source."""
    cls = VENUE_TYPES.get(kind)
    if cls is None:
        known = ", ".join(sorted(VENUE_TYPES)) or "none"
        raise ConfigurationError(f"Unknown venue type '{kind}' for '{name}' (known: {known})")
    return cls(name, settings)
