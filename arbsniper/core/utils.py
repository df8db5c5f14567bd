"""Utility functions for the trading bot."""

import time
from datetime import datetime, timedelta, timezone
from typing import Tuple


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_utc_midnight_ms(ts_ms: int) -> int:
    """Epoch milliseconds of the first UTC midnight strictly after ts_ms."""
    current = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    midnight = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
    return int((midnight + timedelta(days=1)).timestamp() * 1000)


def split_instrument(instrument: str) -> Tuple[str, str]:
    """Split 'BASE/QUOTE' into its assets."""
    base, _, quote = instrument.partition("/")
    if not base or not quote:
        raise ValueError(f"Instrument must look like BASE/QUOTE: {instrument}")
    return base, quote


def format_usd(amount: float) -> str:
    """Format USD amount with appropriate precision."""
    if abs(amount) >= 1000:
        return f"${amount:.0f}"
    elif abs(amount) >= 100:
        return f"${amount:.1f}"
    elif abs(amount) >= 10:
        return f"${amount:.2f}"
    else:
        return f"${amount:.4f}"


def format_pct(value: float) -> str:
    """Format a value that is already in percent."""
    return f"{value:.2f}%"
