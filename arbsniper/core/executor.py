"""Two-leg trade execution through a Signer."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..config import ExecutionConfig
from ..errors import (
    ArbitrageError, ConfirmationTimeout, LegSubmissionFailed,
)
from ..wallet.base import Signer
from .registry import OpportunityRegistry
from .scheduler import ExecutionScheduler
from .types import (
    ExecutableOpportunity, ExecutionResult, ExecutionStage, Opportunity,
    OpportunityStatus, TradeDirection, TradeLegRequest, TradeResult, TradeSide,
)
from .utils import now_ms

DEFAULT_SLIPPAGE_TOLERANCE = 0.003


@dataclass
class LegParams:
    """Per-execution overrides."""
    slippage_tolerance: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class TradeExecutor:
    """Executes an admitted opportunity as two sequential legs.

    Leg 1 opens the position on the source venue; leg 2 closes it on the
    target venue using leg 1's confirmed output. The executor owns the
    pending -> executing -> completed/failed transitions of the entry and
    returns the scheduler slot when it is done.
    """

    def __init__(self, config: ExecutionConfig, signer: Signer,
                 registry: OpportunityRegistry, scheduler: ExecutionScheduler,
                 default_slippage: float = DEFAULT_SLIPPAGE_TOLERANCE,
                 clock: Callable[[], int] = now_ms):
        self.config = config
        self.signer = signer
        self.registry = registry
        self.scheduler = scheduler
        self.default_slippage = default_slippage
        self.clock = clock

    def slippage_for(self, leg_params: Optional[LegParams] = None) -> float:
        if leg_params and leg_params.slippage_tolerance is not None:
            return leg_params.slippage_tolerance
        if self.config.slippage_tolerance is not None:
            return self.config.slippage_tolerance
        return self.default_slippage

    async def execute(self, entry: ExecutableOpportunity,
                      leg_params: Optional[LegParams] = None) -> ExecutionResult:
        """Execute an admitted opportunity. Releases the scheduler slot exactly once."""
        start_time = time.time()
        result = ExecutionResult(
            opportunity_id=entry.id,
            success=False,
            stage=ExecutionStage.PREPARING,
            stages=[ExecutionStage.PREPARING],
            metadata=dict(leg_params.metadata) if leg_params else {},
        )

        try:
            try:
                self.registry.transition(entry.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING,
                                         execution_started_at=self.clock())
            except ArbitrageError as e:
                # Nothing submitted; the entry is not ours to finish
                logger.warning(f"Cannot start execution of {entry.id}: {e}")
                self._mark_failed(result, str(e))
                return result

            logger.info(f"Executing {entry.id}: {entry.direction.value} {entry.instrument} "
                        f"{entry.source_venue} -> {entry.target_venue}, expected {entry.profit_percentage:.3f}%")

            try:
                await self._run_legs(entry.opportunity, self.slippage_for(leg_params), result)
            except LegSubmissionFailed as e:
                result.legs = tuple(e.legs)
                self._mark_failed(result, str(e))
                logger.error(f"Execution of {entry.id} failed: {e}")
            except asyncio.CancelledError:
                self._mark_failed(result, "execution cancelled")
                self._record(entry, result)
                raise
            except Exception as e:
                self._mark_failed(result, f"Execution failed: {e}")
                logger.exception(f"Unexpected error executing {entry.id}")

            self._record(entry, result)
            return result

        finally:
            result.execution_time_ms = int((time.time() - start_time) * 1000)
            self.scheduler.release()

    async def _run_legs(self, opportunity: Opportunity, slippage: float, result: ExecutionResult):
        """Submit leg 1, then leg 2 with leg 1's confirmed output."""
        legs: List[TradeResult] = []

        if opportunity.direction == TradeDirection.BUY:
            first_side, second_side = TradeSide.BUY, TradeSide.SELL
            first_input = opportunity.trade_size * opportunity.source_price
        else:
            first_side, second_side = TradeSide.SELL, TradeSide.BUY
            first_input = opportunity.trade_size

        leg1 = await self._submit_leg(
            self._build_request(opportunity, 1, opportunity.source_venue, first_side,
                                first_input, opportunity.source_price, slippage),
            result, legs,
        )

        leg2 = await self._submit_leg(
            self._build_request(opportunity, 2, opportunity.target_venue, second_side,
                                leg1.output_amount, opportunity.target_price, slippage),
            result, legs,
        )

        # Leg 1 spends what leg 2 returns, in the same asset
        profit = leg2.output_amount - leg1.input_amount
        result.legs = tuple(legs)
        result.profit = profit
        result.profit_percentage = profit / leg1.input_amount * 100 if leg1.input_amount else 0.0
        result.success = True

        logger.info(f"Execution of {opportunity.id} completed: profit {profit:.6f} "
                    f"({result.profit_percentage:.3f}%), fees {result.total_fees:.6f}")

    def _build_request(self, opportunity: Opportunity, leg: int, venue: str, side: TradeSide,
                       input_amount: float, price: float, slippage: float) -> TradeLegRequest:
        if side == TradeSide.BUY:
            expected = input_amount / price
        else:
            expected = input_amount * price

        return TradeLegRequest(
            opportunity_id=opportunity.id,
            leg=leg,
            venue=venue,
            instrument=opportunity.instrument,
            side=side,
            input_amount=input_amount,
            expected_output=expected,
            min_output_amount=expected * (1 - slippage),
            reference_price=price,
            confirmation_level=self.config.confirmation_level,
        )

    async def _submit_leg(self, request: TradeLegRequest, result: ExecutionResult,
                          legs: List[TradeResult]) -> TradeResult:
        """Submit a leg with retries. Raises LegSubmissionFailed once attempts run out."""
        submitted, confirmed = LEG_STAGES[request.leg]
        self._advance(result, submitted)

        attempts = 1 + self.config.max_retries
        error: Optional[LegSubmissionFailed] = None

        for attempt in range(1, attempts + 1):
            try:
                receipt = await asyncio.wait_for(self.signer.submit(request),
                                                 timeout=self.config.timeout_ms / 1000)
            except asyncio.TimeoutError:
                error = ConfirmationTimeout(request.leg, request.venue, self.config.timeout_ms)
            except Exception as e:
                error = LegSubmissionFailed(request.leg, request.venue, f"{type(e).__name__}: {e}")
            else:
                if receipt.success and receipt.output_amount:
                    trade = TradeResult(
                        leg=request.leg,
                        venue=request.venue,
                        instrument=request.instrument,
                        side=request.side,
                        input_amount=request.input_amount,
                        min_output_amount=request.min_output_amount,
                        success=True,
                        output_amount=receipt.output_amount,
                        signature=receipt.signature,
                        fee=receipt.fee,
                        attempts=attempt,
                        confirmation_time_ms=receipt.confirmation_time_ms,
                    )
                    legs.append(trade)
                    self._advance(result, confirmed)
                    logger.info(f"Leg {request.leg} confirmed on {request.venue}: {trade.signature} "
                                f"({request.input_amount:.6f} -> {trade.output_amount:.6f}, attempt {attempt})")
                    return trade

                error = LegSubmissionFailed(request.leg, request.venue,
                                            receipt.error or "no confirmed output")

            logger.warning(f"Leg {request.leg} attempt {attempt}/{attempts} failed: {error.reason}")
            if attempt < attempts and self.config.retry_backoff_ms > 0:
                await asyncio.sleep(self.config.retry_backoff_ms * attempt / 1000)

        legs.append(TradeResult(
            leg=request.leg,
            venue=request.venue,
            instrument=request.instrument,
            side=request.side,
            input_amount=request.input_amount,
            min_output_amount=request.min_output_amount,
            success=False,
            error=error.reason,
            attempts=attempts,
        ))
        error.legs = tuple(legs)
        raise error

    def _advance(self, result: ExecutionResult, stage: ExecutionStage):
        result.stage = stage
        result.stages.append(stage)

    def _mark_failed(self, result: ExecutionResult, error: str):
        result.success = False
        result.error = error
        result.profit = None
        result.profit_percentage = None
        self._advance(result, ExecutionStage.FAILED)

    def _record(self, entry: ExecutableOpportunity, result: ExecutionResult):
        """Move the entry to its terminal status. Registry errors are logged only."""
        signatures = [leg.signature for leg in result.legs if leg.signature]
        fields = dict(
            completed_at=self.clock(),
            legs=result.legs,
            tx_reference=",".join(signatures) or None,
            total_fees=result.total_fees,
        )

        if result.success:
            to_status = OpportunityStatus.COMPLETED
            fields.update(actual_profit=result.profit, actual_profit_percentage=result.profit_percentage)
        else:
            to_status = OpportunityStatus.FAILED
            fields.update(error_reason=result.error)

        try:
            self.registry.transition(entry.id, OpportunityStatus.EXECUTING, to_status, **fields)
        except ArbitrageError as e:
            logger.error(f"Failed to record {to_status.value} for {entry.id}: {e}")


LEG_STAGES = {
    1: (ExecutionStage.LEG1_SUBMITTED, ExecutionStage.LEG1_CONFIRMED),
    2: (ExecutionStage.LEG2_SUBMITTED, ExecutionStage.LEG2_CONFIRMED),
}
