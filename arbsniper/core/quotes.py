"""Quote polling and aggregation across venues."""

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..config import MarketConfig
from ..errors import SourceUnavailable
from ..venues.base import Quote, QuoteSource
from .events import EventBus
from .types import Snapshot
from .utils import now_ms


class MarketAggregator:
    """Polls quote sources on a fixed interval and publishes snapshots.

    The aggregator is the single writer of the quote table, keyed by
    (venue, instrument). A snapshot is published only after every fetch of
    a cycle has finished or been skipped.
    """

    def __init__(self, config: MarketConfig, clock: Callable[[], int] = now_ms):
        self.config = config
        self.clock = clock
        self.sources: Dict[str, QuoteSource] = {}
        self.instruments: Dict[str, List[str]] = {}
        self.snapshots: EventBus[Snapshot] = EventBus("snapshot")
        self._quotes: Dict[Tuple[str, str], Quote] = {}
        self._snapshot = Snapshot.build({}, taken_at=0)
        self._cycle = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._failures = 0

    async def initialize(self, venues: Iterable[QuoteSource]) -> bool:
        """Initialize quote sources. Succeeds if at least one venue is live."""
        wanted = set(self.config.instruments)

        for source in venues:
            try:
                ok = await source.initialize()
            except Exception as e:
                logger.error(f"Failed to initialize {source.name}: {e}")
                ok = False

            if not ok:
                logger.error(f"Venue {source.name} is unavailable, skipping")
                continue

            try:
                supported = await source.list_supported_instruments()
            except Exception as e:
                logger.error(f"Failed to list instruments for {source.name}: {e}")
                continue

            if wanted:
                supported = [symbol for symbol in supported if symbol in wanted]

            if not supported:
                logger.warning(f"Venue {source.name} supports none of the configured instruments")
                continue

            self.sources[source.name] = source
            self.instruments[source.name] = supported
            logger.info(f"Venue {source.name} live with {len(supported)} instruments")

        if not self.sources:
            logger.error("No live venues after initialization")
            return False
        return True

    async def start(self) -> bool:
        """Begin periodic polling."""
        if self._running:
            logger.warning("Market aggregator is already running")
            return True

        if not self.sources:
            logger.error("Market aggregator is not initialized")
            return False

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Started market polling every {self.config.polling_interval_ms}ms across {len(self.sources)} venues")
        return True

    async def stop(self):
        """Stop polling. Safe to call more than once."""
        if not self._running:
            return

        self._running = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Market polling stopped")

    async def close(self):
        """Stop polling and close every source."""
        await self.stop()
        for source in self.sources.values():
            await source.close()

    async def _poll_loop(self):
        """Run one cycle per interval; a slow cycle delays the next, never overlaps it."""
        interval = self.config.polling_interval_ms / 1000
        while self._running:
            started = time.monotonic()
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error in polling cycle: {e}")
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def poll_once(self) -> Snapshot:
        """Fetch every (venue, instrument) pair and publish a new snapshot."""
        pairs = [
            (name, instrument)
            for name in self.sources
            for instrument in self.instruments.get(name, [])
        ]

        results = await asyncio.gather(
            *(self._fetch_quote(name, instrument) for name, instrument in pairs),
            return_exceptions=True,
        )

        updated = 0
        for (name, instrument), result in zip(pairs, results):
            if isinstance(result, Quote):
                self._quotes[(name, instrument)] = result
                updated += 1
            elif isinstance(result, SourceUnavailable):
                self._failures += 1
                logger.warning(f"Source unavailable: {result}")
            elif isinstance(result, BaseException):
                self._failures += 1
                logger.error(f"Unexpected error fetching {name} {instrument}: {result}")

        self._cycle += 1
        snapshot = self._build_snapshot()
        self._snapshot = snapshot
        logger.debug(f"Cycle {self._cycle}: {updated}/{len(pairs)} quotes updated")

        self.snapshots.publish(snapshot)
        return snapshot

    async def _fetch_quote(self, venue: str, instrument: str) -> Quote:
        """Fetch one quote, raising SourceUnavailable on any failure."""
        source = self.sources[venue]
        timeout = self.config.fetch_timeout_ms / 1000

        try:
            price = await asyncio.wait_for(source.get_price(instrument), timeout=timeout)
        except asyncio.TimeoutError:
            raise SourceUnavailable(venue, instrument, f"timed out after {self.config.fetch_timeout_ms}ms")
        except Exception as e:
            raise SourceUnavailable(venue, instrument, str(e))

        if price is None:
            raise SourceUnavailable(venue, instrument, "no price returned")

        if price.bid <= 0 or price.ask <= 0:
            raise SourceUnavailable(venue, instrument, f"invalid prices bid={price.bid} ask={price.ask}")

        return Quote(
            venue=venue,
            instrument=instrument,
            bid=price.bid,
            ask=price.ask,
            last=price.last,
            observed_at=price.timestamp or self.clock(),
        )

    def _build_snapshot(self) -> Snapshot:
        """Group the quote table by instrument, venues in registration order."""
        grouped: Dict[str, List[Quote]] = {}
        for name in self.sources:
            for instrument in self.instruments.get(name, []):
                quote = self._quotes.get((name, instrument))
                if quote is not None:
                    grouped.setdefault(instrument, []).append(quote)
        return Snapshot.build(grouped, taken_at=self.clock(), cycle=self._cycle)

    def subscribe(self, callback: Callable[[Snapshot], None]) -> int:
        """Subscribe to snapshot updates."""
        return self.snapshots.subscribe(callback)

    def unsubscribe(self, token: int) -> bool:
        """Unsubscribe from snapshot updates."""
        return self.snapshots.unsubscribe(token)

    def get_snapshot(self) -> Snapshot:
        """Latest published snapshot."""
        return self._snapshot

    def get_quote(self, venue: str, instrument: str) -> Optional[Quote]:
        """Latest quote for a venue and instrument."""
        return self._quotes.get((venue, instrument))

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        """Get status of market polling."""
        return {
            'running': self._running,
            'cycles': self._cycle,
            'venues': {name: len(items) for name, items in self.instruments.items()},
            'quotes': len(self._quotes),
            'fetch_failures': self._failures,
            'last_snapshot_ms': self._snapshot.taken_at,
        }
