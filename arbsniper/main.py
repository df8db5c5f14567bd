"""Main entry point for the cross-venue arbitrage bot."""

import asyncio
import signal
import sys
from typing import Optional

import click
from loguru import logger

from .config import Config, get_config
from .core.engine import ArbitrageBot
from .core.utils import format_pct, format_usd
from .errors import ConfigurationError

CONSOLE_FORMAT = ("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
                  "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(config: Config, level: Optional[str] = None):
    """Configure console and file sinks."""
    logger.remove()
    logger.add(sys.stderr, level=level or config.logging.level, format=CONSOLE_FORMAT)
    if config.logging.file:
        logger.add(config.logging.file, level=config.logging.file_level, format=FILE_FORMAT,
                   rotation=config.logging.rotation, retention=config.logging.retention)


def load_config(path: str, mode: Optional[str] = None) -> Config:
    """Load and validate configuration, exiting on error."""
    try:
        config = get_config(path)
        if mode:
            config.mode = mode
        config.validate_startup()
        return config
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)


async def _run_bot(bot: ArbitrageBot, duration: Optional[float]):
    loop = asyncio.get_running_loop()

    def _shutdown(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        asyncio.create_task(bot.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _shutdown, signum)
        except NotImplementedError:
            # Not supported on Windows event loops
            pass

    await bot.run(duration)


@click.group()
def cli():
    """Cross-Venue Arbitrage Bot CLI."""
    pass


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
@click.option('--mode', type=click.Choice(['paper', 'live']), default=None,
              help='Override the configured mode')
@click.option('--duration', type=float, default=None,
              help='Stop after this many seconds')
def run(config, mode, duration):
    """Run the arbitrage bot."""
    logger.remove()
    logger.add(sys.stderr, level="INFO", format=CONSOLE_FORMAT)

    cfg = load_config(config, mode)
    setup_logging(cfg)

    if cfg.mode == "live":
        logger.warning("LIVE mode: orders will be placed with real funds")

    bot = ArbitrageBot(cfg)

    try:
        asyncio.run(_run_bot(bot, duration))
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except ConfigurationError as e:
        logger.error(f"Startup check failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Bot failed: {e}")
        sys.exit(1)

    status = bot.get_status()
    print(f"""
=== SESSION SUMMARY ===
- Opportunities: {status['opportunities_found']}
- Completed trades: {status['completed_trades']}
- Failed trades: {status['failed_trades']}
- Realized profit: {format_usd(status['realized_profit'])}
""")


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def scan(config):
    """Poll every venue once and print ranked opportunities without trading."""
    async def scan_once():
        cfg = load_config(config)
        setup_logging(cfg, level="WARNING")

        bot = ArbitrageBot(cfg)
        try:
            if not await bot.aggregator.initialize(bot.sources):
                print("No venue could be initialized")
                return
            snapshot = await bot.aggregator.poll_once()
            opportunities = bot.detector.detect(snapshot, now_ms=bot.clock())
        finally:
            await bot.aggregator.close()
            await bot.signer.close()

        print(f"\n=== SCAN: {len(snapshot)} quotes across {len(snapshot.instruments)} instruments ===")
        if not opportunities:
            print("No opportunities above threshold")
            return

        for i, opportunity in enumerate(opportunities, 1):
            print(f"{i:2d}. {opportunity.instrument:<10} {opportunity.direction.value:<4} "
                  f"{opportunity.source_venue} -> {opportunity.target_venue}: "
                  f"{format_pct(opportunity.profit_percentage)}, est {format_usd(opportunity.estimated_profit)}")

    asyncio.run(scan_once())


@cli.command(name='check-config')
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def check_config(config):
    """Validate the configuration and print a summary."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING")

    cfg = load_config(config)

    print(f"""
=== CONFIGURATION OK ===
Mode: {cfg.mode}
Venues: {', '.join(f"{venue.name} ({venue.type})" for venue in cfg.enabled_venues)}
Instruments: {', '.join(cfg.market.instruments) or 'all supported'}
Polling: every {cfg.market.polling_interval_ms}ms
Min profit: {format_pct(cfg.detector.min_profit_threshold_pct)}
Trade size: {format_usd(cfg.detector.trade_size_usd)}
Max concurrent trades: {cfg.scheduler.max_concurrent_trades}
Max daily trades: {cfg.scheduler.max_daily_trades}
Slippage tolerance: {format_pct(cfg.slippage_tolerance * 100)}
""")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
