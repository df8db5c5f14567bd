"""Error taxonomy for the arbitrage pipeline."""

from typing import Optional, Tuple


class ArbitrageError(Exception):
    """Base class for arbitrage bot errors."""
    pass


class ConfigurationError(ArbitrageError):
    """Raised for invalid or incomplete configuration. Fatal at startup."""
    pass


class SourceUnavailable(ArbitrageError):
    """Raised when a quote source cannot produce a quote."""

    def __init__(self, venue: str, instrument: str, reason: str):
        super().__init__(f"{venue} {instrument}: {reason}")
        self.venue = venue
        self.instrument = instrument
        self.reason = reason


class StaleData(ArbitrageError):
    """Raised when a quote is older than the configured max age."""

    def __init__(self, venue: str, instrument: str, age_ms: int):
        super().__init__(f"{venue} {instrument} quote is {age_ms}ms old")
        self.venue = venue
        self.instrument = instrument
        self.age_ms = age_ms


class AdmissionRejected(ArbitrageError):
    """Raised when an opportunity fails a scheduler gate."""

    def __init__(self, gate: str, detail: str = ""):
        super().__init__(f"{gate}: {detail}" if detail else gate)
        self.gate = gate
        self.detail = detail


class LegSubmissionFailed(ArbitrageError):
    """Raised when a trade leg cannot be confirmed."""

    def __init__(self, leg: int, venue: str, reason: str, legs: Tuple = ()):
        super().__init__(f"leg {leg} on {venue} failed: {reason}")
        self.leg = leg
        self.venue = venue
        self.reason = reason
        self.legs = legs


class ConfirmationTimeout(LegSubmissionFailed):
    """Raised when a leg is not confirmed within the timeout."""

    def __init__(self, leg: int, venue: str, timeout_ms: int):
        super().__init__(leg, venue, f"confirmation timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ConcurrencyViolation(ArbitrageError):
    """Raised when execution slot accounting breaks. Signals a bug."""
    pass


class OpportunityNotFound(ArbitrageError):
    """Raised when an opportunity id is not in the registry."""

    def __init__(self, opportunity_id: str):
        super().__init__(f"Opportunity not found: {opportunity_id}")
        self.opportunity_id = opportunity_id


class InvalidTransition(ArbitrageError):
    """Raised when a status transition precondition does not hold."""

    def __init__(self, opportunity_id: str, current: str, expected: str, target: Optional[str] = None):
        message = f"Opportunity {opportunity_id} is {current}, expected {expected}"
        if target:
            message += f" for transition to {target}"
        super().__init__(message)
        self.opportunity_id = opportunity_id
        self.current = current
        self.expected = expected
        self.target = target
