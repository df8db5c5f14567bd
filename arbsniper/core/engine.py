"""Arbitrage bot wiring the quote, detection, scheduling and execution pipeline."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger

from ..config import Config
from ..errors import ConcurrencyViolation, ConfigurationError
from ..venues import QuoteSource, create_quote_source
from ..wallet import CcxtSigner, PaperSigner, Signer
from .detector import OpportunityDetector
from .executor import TradeExecutor
from .quotes import MarketAggregator
from .registry import OpportunityRegistry
from .scheduler import ExecutionScheduler
from .types import ExecutableOpportunity, ExecutionResult, OpportunityStatus, Snapshot
from .utils import format_usd, now_ms


def build_quote_sources(config: Config) -> List[QuoteSource]:
    """Create a quote source for every enabled venue."""
    sources = []
    for venue in config.enabled_venues:
        settings = venue.model_dump(exclude={"api_key", "secret", "password"})
        sources.append(create_quote_source(venue.name, venue.type, settings))
    return sources


class ArbitrageBot:
    """Cross-venue arbitrage bot."""

    def __init__(self, config: Config, sources: Optional[List[QuoteSource]] = None,
                 signer: Optional[Signer] = None, clock: Callable[[], int] = now_ms):
        self.config = config
        self.clock = clock
        self.mode = config.mode

        self.aggregator = MarketAggregator(config.market, clock)
        self.detector = OpportunityDetector(config.detector)
        self.registry = OpportunityRegistry(config.registry, clock)
        self.scheduler = ExecutionScheduler(config.scheduler, clock)
        self.sources = sources if sources is not None else build_quote_sources(config)
        self.signer = signer or self._build_signer()
        self.executor = TradeExecutor(
            config.execution, self.signer, self.registry, self.scheduler,
            default_slippage=config.slippage_tolerance, clock=clock,
        )

        self.running = False
        self.opportunities_found = 0
        self.completed_trades = 0
        self.failed_trades = 0
        self.realized_profit = 0.0
        self.fatal_error: Optional[BaseException] = None

        self._executions: Set[asyncio.Task] = set()
        self._snapshot_token: Optional[int] = None
        self._status_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

        self.registry.subscribe(self._on_opportunity_update)

        logger.info(f"Arbitrage bot initialized in {self.mode.upper()} mode")
        logger.info(f"Venues: {[source.name for source in self.sources]}")
        logger.info(f"Min profit: {config.detector.min_profit_threshold_pct}%, "
                    f"trade size: ${config.detector.trade_size_usd:,.2f}")

    def _build_signer(self) -> Signer:
        if self.mode == "live":
            return CcxtSigner(self.config.wallet, self.config.enabled_venues)
        return PaperSigner(self.config.wallet, self.aggregator.get_quote)

    async def start(self) -> bool:
        """Initialize venues and begin polling."""
        if self.running:
            return True

        logger.info(f"Starting arbitrage bot in {self.mode} mode")

        await self.validate_wallet()

        if not await self.aggregator.initialize(self.sources):
            logger.error("Failed to initialize any venue")
            return False

        self._stopped = asyncio.Event()
        self._snapshot_token = self.aggregator.subscribe(self._on_snapshot)
        self.scheduler.start()

        if not await self.aggregator.start():
            self.scheduler.stop()
            return False

        self.running = True
        if self.config.logging.status_interval_s > 0:
            self._status_task = asyncio.create_task(self._status_loop())
        return True

    async def validate_wallet(self) -> Dict[str, float]:
        """Check the signer account and its minimum balances.

        Raises ConfigurationError when the signer has no address or any
        configured minimum is not met.
        """
        address = self.signer.get_address()
        if not address:
            raise ConfigurationError("Signer has no account address")

        wallet = self.config.wallet
        required = dict(wallet.min_balances)
        if wallet.min_balance > 0:
            required[wallet.balance_asset] = max(wallet.min_balance, required.get(wallet.balance_asset, 0.0))

        balances = {}
        errors = []
        for asset, minimum in required.items():
            balance = await self.signer.get_balance(asset)
            balances[asset] = balance
            if balance < minimum:
                errors.append(f"{asset} balance {balance} below minimum {minimum}")

        if errors:
            logger.error(f"Wallet {address} failed balance validation: {'; '.join(errors)}")
            raise ConfigurationError(f"Insufficient wallet balance: {'; '.join(errors)}")

        logger.info(f"Wallet {address} validated, balances: {balances}")
        return balances

    async def stop(self):
        """Stop polling and admissions. In-flight executions keep running."""
        if not self.running:
            return

        logger.info("Stopping arbitrage bot")
        self.running = False
        self.scheduler.stop()

        if self._snapshot_token is not None:
            self.aggregator.unsubscribe(self._snapshot_token)
            self._snapshot_token = None

        await self.aggregator.stop()

        if self._status_task is not None and self._status_task is not asyncio.current_task():
            self._status_task.cancel()
        self._status_task = None
        if self._stopped is not None:
            self._stopped.set()

    async def close(self):
        """Stop, wait for executions and release venue and signer resources."""
        await self.stop()
        await self.wait_for_idle()
        try:
            await self.aggregator.close()
            await self.signer.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    async def wait_for_idle(self) -> List[ExecutionResult]:
        """Wait until every in-flight execution has finished."""
        results = []
        while self._executions:
            tasks = list(self._executions)
            done = await asyncio.gather(*tasks, return_exceptions=True)
            self._executions.difference_update(tasks)
            results.extend(result for result in done if isinstance(result, ExecutionResult))
        return results

    async def run(self, duration: Optional[float] = None):
        """Run until stopped or until duration seconds have passed."""
        try:
            started = await self.start()
        except ConfigurationError:
            await self.close()
            raise
        if not started:
            return

        try:
            if duration:
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=duration)
                except asyncio.TimeoutError:
                    logger.info(f"Run duration of {duration}s reached")
            else:
                await self._stopped.wait()
        finally:
            await self.close()
            self._log_status()

        if self.fatal_error is not None:
            raise self.fatal_error

    def _on_snapshot(self, snapshot: Snapshot):
        """Detect, register, expire and dispatch for one snapshot."""
        opportunities = self.detector.detect(snapshot, now_ms=self.clock())
        created = self.registry.ingest(opportunities)
        self.opportunities_found += len(created)
        self.registry.expire()

        if self.running:
            self._dispatch()

    def _dispatch(self):
        """Admit pending opportunities and launch their executions."""
        now = self.clock()
        max_age_ms = self.config.detector.max_quote_age_ms
        for entry in self.registry.pending():
            # Prices older than the quote age limit are not traded on
            if now - entry.detected_at > max_age_ms:
                continue
            try:
                admitted = self.scheduler.admit(entry)
            except ConcurrencyViolation as e:
                self._fail_fatal(e)
                return

            if admitted:
                task = asyncio.create_task(self._execute(entry))
                self._executions.add(task)
                task.add_done_callback(self._executions.discard)

    async def _execute(self, entry: ExecutableOpportunity) -> ExecutionResult:
        try:
            return await self.executor.execute(entry)
        except ConcurrencyViolation as e:
            self._fail_fatal(e)
            raise

    def _fail_fatal(self, error: BaseException):
        logger.critical(f"Concurrency accounting broken, stopping: {error}")
        if self.fatal_error is None:
            self.fatal_error = error
        asyncio.create_task(self.stop())

    def _on_opportunity_update(self, entry: ExecutableOpportunity):
        if entry.status == OpportunityStatus.COMPLETED:
            self.completed_trades += 1
            self.realized_profit += entry.actual_profit or 0.0
        elif entry.status == OpportunityStatus.FAILED:
            self.failed_trades += 1

    async def _status_loop(self):
        while self.running:
            await asyncio.sleep(self.config.logging.status_interval_s)
            self._log_status()

    def _log_status(self):
        status = self.get_status()
        logger.info(f"Status: {status['opportunities_found']} found, {status['pending']} pending, "
                    f"{status['executing']} executing, {status['completed_trades']} completed, "
                    f"{status['failed_trades']} failed, profit {format_usd(status['realized_profit'])}")

    def get_opportunities(self) -> List[ExecutableOpportunity]:
        """All tracked opportunities."""
        return self.registry.get_opportunities()

    def get_opportunities_by_status(self, status: OpportunityStatus) -> List[ExecutableOpportunity]:
        """Tracked opportunities with the given status."""
        return self.registry.get_opportunities_by_status(status)

    def get_status(self) -> Dict[str, Any]:
        """Get bot status."""
        stats = self.registry.get_stats()
        trade_stats = self.scheduler.get_trade_stats()
        return {
            'running': self.running,
            'mode': self.mode,
            'opportunities_found': self.opportunities_found,
            'tracked': stats['tracked'],
            'pending': stats[OpportunityStatus.PENDING.value],
            'executing': stats[OpportunityStatus.EXECUTING.value],
            'completed_trades': self.completed_trades,
            'failed_trades': self.failed_trades,
            'active_executions': trade_stats['active_executions'],
            'daily_trade_count': trade_stats['daily_trade_count'],
            'max_daily_trades': trade_stats['max_daily_trades'],
            'realized_profit': self.realized_profit,
            'venues': self.aggregator.get_status()['venues'],
        }
