"""Test two-leg trade execution."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from arbsniper.config import ExecutionConfig, SchedulerConfig
from arbsniper.core.executor import LegParams, TradeExecutor
from arbsniper.core.registry import OpportunityRegistry
from arbsniper.core.scheduler import ExecutionScheduler
from arbsniper.core.types import ExecutionStage, OpportunityStatus, TradeDirection, TradeSide
from arbsniper.wallet.base import Signer, SignerReceipt

from sample_data import FakeClock, make_opportunity


def ok(output, signature="sig", fee=0.0):
    return SignerReceipt(success=True, signature=signature, output_amount=output, fee=fee,
                         confirmation_time_ms=10)


def failed(error="rejected"):
    return SignerReceipt(success=False, error=error)


class ExecutorHarness:
    """Registry, scheduler and a mocked signer around one admitted opportunity."""

    def __init__(self, opportunity=None, **execution):
        self.clock = FakeClock()
        self.registry = OpportunityRegistry(clock=self.clock)
        self.scheduler = ExecutionScheduler(
            SchedulerConfig(cooldown_ms=0, min_trade_interval_ms=0, min_profit_threshold_pct=0.5),
            clock=self.clock,
        )
        self.scheduler.start()

        self.signer = Mock(spec=Signer)
        self.signer.submit = AsyncMock()

        settings = dict(max_retries=3, retry_backoff_ms=0, timeout_ms=1000)
        settings.update(execution)
        self.executor = TradeExecutor(ExecutionConfig(**settings), self.signer,
                                      self.registry, self.scheduler, clock=self.clock)

        self.opportunity = opportunity or make_opportunity()
        self.entry = self.registry.ingest([self.opportunity])[0]
        assert self.scheduler.admit(self.entry)

    def requests(self):
        return [call.args[0] for call in self.signer.submit.await_args_list]


class TestSuccessfulExecution:
    """Test the happy path for both directions."""

    @pytest.mark.asyncio
    async def test_buy_direction_completes(self):
        """Leg 1 buys on the source venue, leg 2 sells the output on the target."""
        harness = ExecutorHarness()
        harness.signer.submit.side_effect = [ok(10.0, "sig1", fee=0.01), ok(1010.0, "sig2", fee=0.5)]

        result = await harness.executor.execute(harness.entry)

        assert result.success is True
        assert result.stage == ExecutionStage.LEG2_CONFIRMED
        assert result.stages == [
            ExecutionStage.PREPARING,
            ExecutionStage.LEG1_SUBMITTED,
            ExecutionStage.LEG1_CONFIRMED,
            ExecutionStage.LEG2_SUBMITTED,
            ExecutionStage.LEG2_CONFIRMED,
        ]
        assert result.profit == pytest.approx(10.0)
        assert result.profit_percentage == pytest.approx(1.0)
        assert result.total_fees == pytest.approx(0.51)

        leg1, leg2 = harness.requests()
        assert (leg1.leg, leg1.venue, leg1.side) == (1, "venue_a", TradeSide.BUY)
        assert leg1.input_amount == pytest.approx(1000.0)
        assert leg1.expected_output == pytest.approx(10.0)
        assert leg1.min_output_amount == pytest.approx(10.0 * (1 - 0.003))
        assert (leg2.leg, leg2.venue, leg2.side) == (2, "venue_b", TradeSide.SELL)
        assert leg2.input_amount == pytest.approx(10.0)
        assert leg2.expected_output == pytest.approx(1010.0)

        entry = harness.registry.get(harness.entry.id)
        assert entry.status == OpportunityStatus.COMPLETED
        assert entry.actual_profit == pytest.approx(10.0)
        assert entry.tx_reference == "sig1,sig2"
        assert entry.total_fees == pytest.approx(0.51)
        assert len(entry.legs) == 2
        assert harness.scheduler.active_executions == 0

    @pytest.mark.asyncio
    async def test_sell_direction_legs(self):
        """Leg 1 sells base on the source venue, leg 2 buys it back on the target."""
        opportunity = make_opportunity(direction=TradeDirection.SELL, source_price=101.0, target_price=100.0)
        harness = ExecutorHarness(opportunity)
        harness.signer.submit.side_effect = [ok(1010.0), ok(10.1)]

        result = await harness.executor.execute(harness.entry)

        leg1, leg2 = harness.requests()
        assert (leg1.side, leg1.input_amount) == (TradeSide.SELL, pytest.approx(10.0))
        assert leg1.expected_output == pytest.approx(1010.0)
        assert (leg2.side, leg2.input_amount) == (TradeSide.BUY, pytest.approx(1010.0))
        assert leg2.expected_output == pytest.approx(10.1)
        assert result.success is True
        assert result.profit == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_leg2_uses_realized_leg1_output(self):
        """Leg 2 trades what leg 1 actually delivered."""
        harness = ExecutorHarness()
        harness.signer.submit.side_effect = [ok(9.98), ok(1007.0)]

        await harness.executor.execute(harness.entry)

        assert harness.requests()[1].input_amount == pytest.approx(9.98)

    @pytest.mark.asyncio
    async def test_leg_params_override_slippage(self):
        """Per-execution slippage overrides the configured tolerance."""
        harness = ExecutorHarness(slippage_tolerance=0.01)
        harness.signer.submit.side_effect = [ok(10.0), ok(1010.0)]

        await harness.executor.execute(harness.entry, LegParams(slippage_tolerance=0.05))

        assert harness.requests()[0].min_output_amount == pytest.approx(10.0 * 0.95)


class TestRetries:
    """Test retry, backoff and timeout handling."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        """A failed attempt is retried and the attempt count recorded."""
        harness = ExecutorHarness()
        harness.signer.submit.side_effect = [RuntimeError("connection reset"), ok(10.0), ok(1010.0)]

        result = await harness.executor.execute(harness.entry)

        assert result.success is True
        assert result.legs[0].attempts == 2
        assert result.legs[1].attempts == 1

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        """Backoff grows with the attempt number."""
        harness = ExecutorHarness(max_retries=2, retry_backoff_ms=100)
        harness.signer.submit.side_effect = [failed(), failed(), ok(10.0), ok(1010.0)]

        with patch("arbsniper.core.executor.asyncio.sleep", new=AsyncMock()) as sleep:
            await harness.executor.execute(harness.entry)

        assert [call.args[0] for call in sleep.await_args_list] == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self):
        """An attempt that outlives timeout_ms is a confirmation timeout."""
        harness = ExecutorHarness(max_retries=0, timeout_ms=50)

        async def never_confirms(request):
            await asyncio.sleep(1)

        harness.signer.submit.side_effect = never_confirms

        result = await harness.executor.execute(harness.entry)

        assert result.success is False
        assert "leg 1" in result.error
        assert "timed out" in result.error
        assert harness.registry.get(harness.entry.id).status == OpportunityStatus.FAILED


class TestFailedExecution:
    """Test leg failures."""

    @pytest.mark.asyncio
    async def test_leg2_fails_after_retries(self):
        """Leg 2 failing on every attempt marks the entry failed and names leg 2."""
        harness = ExecutorHarness()
        harness.signer.submit.side_effect = [ok(10.0, "sig1")] + [failed("insufficient liquidity")] * 4

        with patch.object(harness.scheduler, "release", wraps=harness.scheduler.release) as release:
            result = await harness.executor.execute(harness.entry)

        assert harness.signer.submit.await_count == 5
        release.assert_called_once()
        assert harness.scheduler.active_executions == 0

        assert result.success is False
        assert result.stage == ExecutionStage.FAILED
        assert result.stages[-2] == ExecutionStage.LEG2_SUBMITTED
        assert result.profit is None
        assert "leg 2" in result.error

        entry = harness.registry.get(harness.entry.id)
        assert entry.status == OpportunityStatus.FAILED
        assert entry.actual_profit is None
        assert "leg 2" in entry.error_reason
        assert entry.tx_reference == "sig1"
        assert [leg.success for leg in entry.legs] == [True, False]
        assert entry.legs[1].attempts == 4

    @pytest.mark.asyncio
    async def test_leg1_failure_skips_leg2(self):
        """Leg 2 never starts without a confirmed leg 1."""
        harness = ExecutorHarness()
        harness.signer.submit.return_value = failed()

        result = await harness.executor.execute(harness.entry)

        assert {request.leg for request in harness.requests()} == {1}
        assert harness.signer.submit.await_count == 4
        assert result.stages == [ExecutionStage.PREPARING, ExecutionStage.LEG1_SUBMITTED, ExecutionStage.FAILED]
        assert "leg 1" in result.error
        assert harness.scheduler.active_executions == 0

    @pytest.mark.asyncio
    async def test_success_without_output_is_failure(self):
        """A receipt without an output amount does not confirm the leg."""
        harness = ExecutorHarness(max_retries=0)
        harness.signer.submit.return_value = SignerReceipt(success=True, signature="sig1")

        result = await harness.executor.execute(harness.entry)

        assert result.success is False
        assert harness.signer.submit.await_count == 1

    @pytest.mark.asyncio
    async def test_entry_not_pending_submits_nothing(self):
        """An entry already claimed elsewhere is not executed."""
        harness = ExecutorHarness()
        harness.registry.transition(harness.entry.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        result = await harness.executor.execute(harness.entry)

        assert result.success is False
        assert result.stage == ExecutionStage.FAILED
        harness.signer.submit.assert_not_awaited()
        assert harness.scheduler.active_executions == 0
        assert harness.registry.get(harness.entry.id).status == OpportunityStatus.EXECUTING

    @pytest.mark.asyncio
    async def test_registry_error_on_completion_is_logged(self):
        """A failed terminal transition does not raise out of execute."""
        harness = ExecutorHarness()
        harness.registry.config = harness.registry.config.model_copy(update={"expire_in_flight": True})

        async def submit(request):
            harness.registry.expire(harness.clock() + 10 ** 9)
            return ok(10.0) if request.leg == 1 else ok(1010.0)

        harness.signer.submit.side_effect = submit

        result = await harness.executor.execute(harness.entry)

        assert result.success is True
        assert harness.entry.id not in harness.registry
        assert harness.scheduler.active_executions == 0
