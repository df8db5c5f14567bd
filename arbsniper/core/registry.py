"""Opportunity bookkeeping: dedup, lifecycle and expiry."""

import dataclasses
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..config import RegistryConfig
from ..errors import InvalidTransition, OpportunityNotFound
from .events import EventBus
from .types import ALLOWED_TRANSITIONS, ExecutableOpportunity, Opportunity, OpportunityStatus
from .utils import now_ms


class OpportunityRegistry:
    """Single writer of opportunity status.

    Entries are immutable; a transition replaces the stored entry and
    publishes the new one to listeners.
    """

    def __init__(self, config: Optional[RegistryConfig] = None, clock: Callable[[], int] = now_ms):
        self.config = config or RegistryConfig()
        self.clock = clock
        self.events: EventBus[ExecutableOpportunity] = EventBus("opportunity", self.config.event_buffer_size)
        self._entries: Dict[str, ExecutableOpportunity] = {}
        self._route_seen: Dict[Tuple[str, str, str, str], int] = {}
        self._lock = threading.RLock()
        self.total_ingested = 0
        self.total_expired = 0

    def ingest(self, opportunities: Iterable[Opportunity]) -> List[ExecutableOpportunity]:
        """Register new opportunities as pending. First-seen wins."""
        created: List[ExecutableOpportunity] = []
        now = self.clock()

        with self._lock:
            for opportunity in opportunities:
                if opportunity.id in self._entries:
                    continue

                if self._is_route_duplicate(opportunity, now):
                    continue

                entry = ExecutableOpportunity(
                    opportunity=opportunity,
                    status=OpportunityStatus.PENDING,
                    created_at=now,
                )
                self._entries[entry.id] = entry
                self._route_seen[opportunity.route_key] = now
                created.append(entry)

            self.total_ingested += len(created)

        for entry in created:
            logger.info(f"New opportunity {entry.id}: {entry.profit_percentage:.3f}%, est ${entry.estimated_profit:.2f}")
            self.events.publish(entry)

        return created

    def _is_route_duplicate(self, opportunity: Opportunity, now: int) -> bool:
        """Check the same route was registered within the dedup window."""
        window = self.config.dedup_window_ms
        if window <= 0:
            return False
        last_seen = self._route_seen.get(opportunity.route_key)
        return last_seen is not None and now - last_seen < window

    def expire(self, now: Optional[int] = None) -> int:
        """Remove entries older than the retention window. Returns the count removed."""
        now = now if now is not None else self.clock()
        cutoff = now - self.config.retention_ms

        with self._lock:
            stale = [
                entry_id for entry_id, entry in self._entries.items()
                if entry.detected_at < cutoff
                and (self.config.expire_in_flight or entry.status != OpportunityStatus.EXECUTING)
            ]
            for entry_id in stale:
                del self._entries[entry_id]

            self._route_seen = {
                key: seen for key, seen in self._route_seen.items()
                if now - seen < max(self.config.dedup_window_ms, self.config.retention_ms)
            }
            self.total_expired += len(stale)

        if stale:
            logger.debug(f"Expired {len(stale)} opportunities")
        return len(stale)

    def transition(self, opportunity_id: str, from_status: OpportunityStatus,
                   to_status: OpportunityStatus, **fields: Any) -> ExecutableOpportunity:
        """Move an entry between statuses if it is currently in from_status."""
        with self._lock:
            entry = self._entries.get(opportunity_id)
            if entry is None:
                raise OpportunityNotFound(opportunity_id)

            if entry.status != from_status:
                raise InvalidTransition(opportunity_id, entry.status.value, from_status.value, to_status.value)

            if (from_status, to_status) not in ALLOWED_TRANSITIONS:
                raise InvalidTransition(opportunity_id, entry.status.value, from_status.value, to_status.value)

            updated = dataclasses.replace(entry, status=to_status, **fields)
            self._entries[opportunity_id] = updated

        logger.debug(f"Opportunity {opportunity_id}: {from_status.value} -> {to_status.value}")
        self.events.publish(updated)
        return updated

    def get(self, opportunity_id: str) -> ExecutableOpportunity:
        """Get an entry by id."""
        with self._lock:
            entry = self._entries.get(opportunity_id)
        if entry is None:
            raise OpportunityNotFound(opportunity_id)
        return entry

    def get_opportunities(self) -> List[ExecutableOpportunity]:
        """All tracked entries in registration order."""
        with self._lock:
            return list(self._entries.values())

    def get_opportunities_by_status(self, status: OpportunityStatus) -> List[ExecutableOpportunity]:
        """Tracked entries with the given status."""
        return [entry for entry in self.get_opportunities() if entry.status == status]

    def pending(self) -> List[ExecutableOpportunity]:
        """Pending entries, most profitable first."""
        entries = self.get_opportunities_by_status(OpportunityStatus.PENDING)
        return sorted(entries, key=lambda entry: entry.profit_percentage, reverse=True)

    def subscribe(self, callback: Callable[[ExecutableOpportunity], None]) -> int:
        """Register a listener for new entries and status changes."""
        return self.events.subscribe(callback)

    def unsubscribe(self, token: int) -> bool:
        return self.events.unsubscribe(token)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, opportunity_id: str) -> bool:
        return opportunity_id in self._entries

    def get_stats(self) -> Dict[str, int]:
        """Counts by status plus lifetime totals."""
        counts = {status.value: 0 for status in OpportunityStatus}
        for entry in self.get_opportunities():
            counts[entry.status.value] += 1
        counts['tracked'] = len(self._entries)
        counts['ingested'] = self.total_ingested
        counts['expired'] = self.total_expired
        return counts
