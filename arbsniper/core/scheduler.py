"""Admission control for opportunity execution."""

import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger

from ..config import SchedulerConfig
from ..errors import AdmissionRejected, ConcurrencyViolation
from .types import ExecutableOpportunity, Opportunity
from .utils import next_utc_midnight_ms, now_ms

DEFAULT_MIN_PROFIT_THRESHOLD_PCT = 0.5


@dataclass
class SchedulerState:
    """Counters mutated only under the scheduler lock."""
    active_executions: int = 0
    last_execution_time: int = 0
    last_trade_time: int = 0
    daily_trade_count: int = 0
    daily_reset_time: int = 0
    total_admitted: int = 0
    total_rejected: int = 0


class ExecutionScheduler:
    """Decides which pending opportunities may start executing now.

    The gate checks and the counter updates happen under a single lock so two
    callers can never both take the last concurrency slot.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None, clock: Callable[[], int] = now_ms):
        self.config = config or SchedulerConfig()
        self.clock = clock
        self.state = SchedulerState(daily_reset_time=next_utc_midnight_ms(clock()))
        self._lock = threading.Lock()
        self._running = False

    def start(self):
        """Allow admissions."""
        if self._running:
            return
        self._running = True
        logger.info(f"Execution scheduler started (max {self.config.max_concurrent_trades} concurrent, "
                    f"{self.config.max_daily_trades}/day)")

    def stop(self):
        """Refuse new admissions. In-flight executions keep their slots."""
        if not self._running:
            return
        self._running = False
        logger.info("Execution scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def min_profit_threshold(self) -> float:
        if self.config.min_profit_threshold_pct is None:
            return DEFAULT_MIN_PROFIT_THRESHOLD_PCT
        return self.config.min_profit_threshold_pct

    def admit(self, opportunity) -> bool:
        """Admit an opportunity for execution, taking a concurrency slot."""
        with self._lock:
            now = self.clock()
            try:
                self._check_gates(opportunity, now)
            except AdmissionRejected as e:
                self.state.total_rejected += 1
                logger.debug(f"Admission rejected for {_describe(opportunity)}: {e}")
                return False

            # Counters move together with the decision
            self.state.active_executions += 1
            self.state.last_execution_time = now
            self.state.last_trade_time = now
            self.state.daily_trade_count += 1
            self.state.total_admitted += 1

            if self.state.active_executions > self.config.max_concurrent_trades:
                raise ConcurrencyViolation(
                    f"{self.state.active_executions} active executions exceed limit "
                    f"{self.config.max_concurrent_trades}"
                )

        logger.info(f"Admitted {_describe(opportunity)} ({self.state.active_executions}/"
                    f"{self.config.max_concurrent_trades} active, {self.state.daily_trade_count} today)")
        return True

    def _check_gates(self, opportunity, now: int):
        """Raise AdmissionRejected for the first gate that fails."""
        config = self.config
        state = self.state

        if not self._running:
            raise AdmissionRejected("not_running")

        if state.active_executions >= config.max_concurrent_trades:
            raise AdmissionRejected("max_concurrent", f"{state.active_executions} active")

        if opportunity.instrument in config.blacklist_instruments:
            raise AdmissionRejected("blacklisted_instrument", opportunity.instrument)

        for venue in (opportunity.source_venue, opportunity.target_venue):
            if venue in config.blacklist_venues:
                raise AdmissionRejected("blacklisted_venue", venue)

        if now - state.last_execution_time < config.cooldown_ms:
            raise AdmissionRejected("cooldown", f"{now - state.last_execution_time}ms since last execution")

        threshold = self.min_profit_threshold
        if opportunity.profit_percentage < threshold:
            raise AdmissionRejected("below_threshold", f"{opportunity.profit_percentage:.3f}% < {threshold}%")

        # Non-priority instruments and venues must clear a higher bar
        boosted = threshold * config.priority_profit_multiplier
        if config.priority_instruments and opportunity.instrument not in config.priority_instruments:
            if opportunity.profit_percentage < boosted:
                raise AdmissionRejected("non_priority_instrument", f"{opportunity.profit_percentage:.3f}% < {boosted}%")

        if config.priority_venues:
            if (opportunity.source_venue not in config.priority_venues
                    and opportunity.target_venue not in config.priority_venues):
                if opportunity.profit_percentage < boosted:
                    raise AdmissionRejected("non_priority_venue", f"{opportunity.profit_percentage:.3f}% < {boosted}%")

        self._maybe_reset_daily(now)
        if state.daily_trade_count >= config.max_daily_trades:
            raise AdmissionRejected("daily_cap", f"{state.daily_trade_count}/{config.max_daily_trades}")

        if now - state.last_trade_time < config.min_trade_interval_ms:
            raise AdmissionRejected("min_trade_interval", f"{now - state.last_trade_time}ms since last trade")

    def _maybe_reset_daily(self, now: int):
        """Reset the daily counter once UTC midnight has passed."""
        if now >= self.state.daily_reset_time:
            if self.state.daily_trade_count:
                logger.info(f"Daily trade count reset ({self.state.daily_trade_count} trades)")
            self.state.daily_trade_count = 0
            self.state.daily_reset_time = next_utc_midnight_ms(now)

    def release(self):
        """Return a concurrency slot. Must be called exactly once per admission."""
        with self._lock:
            if self.state.active_executions <= 0:
                raise ConcurrencyViolation("release() called with no active executions")
            self.state.active_executions -= 1

    @property
    def active_executions(self) -> int:
        return self.state.active_executions

    def update_config(self, **changes: Any):
        """Apply configuration changes."""
        with self._lock:
            self.config = self.config.model_copy(update=changes)
        logger.info(f"Scheduler config updated: {changes}")

    def get_trade_stats(self) -> Dict[str, Any]:
        """Get daily trade statistics."""
        with self._lock:
            self._maybe_reset_daily(self.clock())
            stats = asdict(self.state)
        stats['max_daily_trades'] = self.config.max_daily_trades
        stats['max_concurrent_trades'] = self.config.max_concurrent_trades
        stats['next_reset_time'] = stats.pop('daily_reset_time')
        return stats


def _describe(opportunity) -> str:
    if isinstance(opportunity, (Opportunity, ExecutableOpportunity)):
        return f"{opportunity.instrument} {opportunity.source_venue}->{opportunity.target_venue}"
    return str(opportunity)
