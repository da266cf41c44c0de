"""
DeFi Execution Engine - Main Entry Point

Runs the price-consensus and order-execution engine: reconciles price feeds,
evaluates pending limit orders and arbitrage round trips on fixed intervals,
and executes actionable items at most once through the store's claim protocol.

Usage:
    python -m defi_executor.main [--dry-run] [--store postgres|memory] [--log-level LEVEL]

Several instances may run against the same PostgreSQL store; the claim
protocol guarantees each item is executed by at most one of them.

Environment Variables:
    DATABASE_URL                PostgreSQL connection string (required for --store postgres)
    STORE_BACKEND               "postgres" (default) or "memory"
    APPLY_SCHEMA                Create engine tables on startup (default: false)
    LOG_LEVEL                   Logging level (DEBUG/INFO/WARNING/ERROR)
    DRY_RUN                     Set to "true" for paper execution (default: true)
    TRACKED_TOKENS              Comma-separated tokens to keep priced (default: ETH,WBTC,LINK)
    ARBITRAGE_PAIRS             Comma-separated BASE/QUOTE[:SIZE] pairs (default: ETH/USDC:1)
    MAX_DEVIATION               Agreement threshold between top sources (default: 0.02)
    MIN_SOURCES                 Quorum size (default: 2)
    SOURCE_TIMEOUT_SECONDS      Per-source timeout (default: 3)
    PRICE_CACHE_TTL_SECONDS     Consensus cache TTL (default: 10)
    MIN_NET_PROFIT              Minimum net arbitrage profit in percent (default: 0.1)
    OPPORTUNITY_TTL_SECONDS     Arbitrage opportunity lifetime (default: 60)
    NATIVE_ASSET                Asset gas is paid in (default: ETH)
    CONCURRENCY_LIMIT           In-flight executions per tick (default: 5)
    BATCH_SIZE                  Pending orders loaded per tick (default: 100)
    EXECUTION_TIMEOUT_SECONDS   Executor call timeout (default: 30)
    CLAIM_TIMEOUT_SECONDS       Claims older than this are released (default: 120)
    PRICE_REFRESH_INTERVAL      Seconds between price refreshes (default: 10)
    ORDER_SCAN_INTERVAL         Seconds between order scans (default: 5)
    ARBITRAGE_SCAN_INTERVAL     Seconds between arbitrage scans (default: 15)
    CLAIM_SWEEP_INTERVAL        Seconds between stale-claim sweeps (default: 30)
    STORE_BACKOFF_SECONDS       Delay before retrying a tick after a store outage (default: 5)
    ZEROX_API_URL               0x API base URL
    ZEROX_API_KEY               0x API key
    COINGECKO_API_URL           CoinGecko API base URL
    TICKER_WS_URL               Streaming ticker WebSocket URL
    TICKER_ENABLED              Connect the streaming ticker (default: true)

Live Mode:
    This package ships only the paper executor. Live execution requires an
    embedding application to pass its own Executor to run_forever().
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from defi_executor.arbitrage import ArbitrageConfig, ArbitrageScanner, TokenPair
from defi_executor.core import BackgroundTaskConfig, BackgroundTasksManager
from defi_executor.execution import (
    CoordinatorConfig,
    ExecutionCoordinator,
    Executor,
    PaperExecutor,
)
from defi_executor.ingestion import (
    DEFAULT_TOKENS,
    CoinGeckoClient,
    CoinGeckoPriceSource,
    RouteGasEstimator,
    StreamingPriceSource,
    TickerWebSocket,
    ZeroExClient,
    ZeroExPriceSource,
    ZeroExRouteQuoter,
)
from defi_executor.pricing import ConsensusConfig, PriceConsensusEngine

# Configure logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, default).split(",") if item.strip()]


@dataclass
class BotConfig:
    """Complete engine configuration."""

    # Store
    database_url: str = ""
    store_backend: str = "postgres"  # "postgres" or "memory"
    apply_schema: bool = False

    # Execution mode
    dry_run: bool = True

    # What to watch
    tracked_tokens: list[str] = field(default_factory=lambda: ["ETH", "WBTC", "LINK"])
    arbitrage_pairs: list[TokenPair] = field(default_factory=lambda: [TokenPair.parse("ETH/USDC:1")])

    # Component configuration
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    tasks: BackgroundTaskConfig = field(default_factory=BackgroundTaskConfig)

    # Upstreams
    zeroex_api_url: str = ZeroExClient.BASE_URL
    zeroex_api_key: Optional[str] = None
    coingecko_api_url: str = CoinGeckoClient.BASE_URL
    ticker_ws_url: str = TickerWebSocket.WS_URL
    ticker_enabled: bool = True

    # Stats logging
    stats_interval_seconds: float = 60

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            store_backend=os.environ.get("STORE_BACKEND", "postgres").lower(),
            apply_schema=_env_bool("APPLY_SCHEMA", "false"),
            dry_run=_env_bool("DRY_RUN", "true"),
            tracked_tokens=[t.upper() for t in _env_list("TRACKED_TOKENS", "ETH,WBTC,LINK")],
            arbitrage_pairs=[TokenPair.parse(p) for p in _env_list("ARBITRAGE_PAIRS", "ETH/USDC:1")],
            consensus=ConsensusConfig(
                max_deviation=float(os.environ.get("MAX_DEVIATION", "0.02")),
                min_sources=int(os.environ.get("MIN_SOURCES", "2")),
                source_timeout_seconds=float(os.environ.get("SOURCE_TIMEOUT_SECONDS", "3")),
                cache_ttl_seconds=float(os.environ.get("PRICE_CACHE_TTL_SECONDS", "10")),
            ),
            arbitrage=ArbitrageConfig(
                min_net_profit_pct=float(os.environ.get("MIN_NET_PROFIT", "0.1")),
                ttl_seconds=int(os.environ.get("OPPORTUNITY_TTL_SECONDS", "60")),
                native_asset=os.environ.get("NATIVE_ASSET", "ETH").upper(),
            ),
            coordinator=CoordinatorConfig(
                concurrency_limit=int(os.environ.get("CONCURRENCY_LIMIT", "5")),
                batch_size=int(os.environ.get("BATCH_SIZE", "100")),
                execution_timeout_seconds=float(os.environ.get("EXECUTION_TIMEOUT_SECONDS", "30")),
                claim_timeout_seconds=float(os.environ.get("CLAIM_TIMEOUT_SECONDS", "120")),
            ),
            tasks=BackgroundTaskConfig(
                price_refresh_interval_seconds=float(os.environ.get("PRICE_REFRESH_INTERVAL", "10")),
                order_scan_interval_seconds=float(os.environ.get("ORDER_SCAN_INTERVAL", "5")),
                arbitrage_scan_interval_seconds=float(os.environ.get("ARBITRAGE_SCAN_INTERVAL", "15")),
                claim_sweep_interval_seconds=float(os.environ.get("CLAIM_SWEEP_INTERVAL", "30")),
                store_backoff_seconds=float(os.environ.get("STORE_BACKOFF_SECONDS", "5")),
            ),
            zeroex_api_url=os.environ.get("ZEROX_API_URL", ZeroExClient.BASE_URL),
            zeroex_api_key=os.environ.get("ZEROX_API_KEY") or None,
            coingecko_api_url=os.environ.get("COINGECKO_API_URL", CoinGeckoClient.BASE_URL),
            ticker_ws_url=os.environ.get("TICKER_WS_URL", TickerWebSocket.WS_URL),
            ticker_enabled=_env_bool("TICKER_ENABLED", "true"),
        )


class ExecutorBot:
    """
    Engine orchestrator.

    Manages the lifecycle of all components:
    - Store (PostgreSQL repositories or in-memory)
    - Upstream clients and the streaming ticker
    - Consensus engine, arbitrage scanner and execution coordinator
    - Background polling loops
    """

    def __init__(self, config: BotConfig, executor: Optional[Executor] = None):
        if not config.dry_run and executor is None:
            raise ValueError("Live execution requires an Executor; set dry_run or pass one in")
        self.config = config
        self._executor = executor
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (initialized on start)
        self._db = None
        self._zeroex = None
        self._coingecko = None
        self._ticker = None
        self._coordinator: Optional[ExecutionCoordinator] = None
        self._background_tasks: Optional[BackgroundTasksManager] = None

    @property
    def coordinator(self) -> Optional[ExecutionCoordinator]:
        return self._coordinator

    def select_executor(self) -> Executor:
        """The paper executor in dry-run mode, whatever was passed in."""
        if self.config.dry_run:
            if isinstance(self._executor, PaperExecutor):
                return self._executor
            if self._executor is not None:
                logger.warning("Dry run: ignoring the supplied executor, using the paper executor")
            return PaperExecutor()
        return self._executor

    async def start(self) -> None:
        """Start the engine and run until shutdown."""
        logger.info("=" * 60)
        logger.info("DEFI EXECUTION ENGINE")
        logger.info("=" * 60)
        logger.info(f"Execution: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Store: {self.config.store_backend}")
        logger.info(f"Tracked tokens: {', '.join(self.config.tracked_tokens) or '-'}")
        logger.info(f"Arbitrage pairs: {', '.join(p.name for p in self.config.arbitrage_pairs) or '-'}")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        self._setup_signal_handlers()

        try:
            order_store, opportunity_store = await self._init_store()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            pricing, scanner = await self._init_pricing()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            executor = self.select_executor()
            self._coordinator = ExecutionCoordinator(
                pricing=pricing,
                order_store=order_store,
                executor=executor,
                config=self.config.coordinator,
                opportunity_store=opportunity_store,
                scanner=scanner,
                tracked_tokens=self.config.tracked_tokens,
                pairs=self.config.arbitrage_pairs,
            )

            self._background_tasks = BackgroundTasksManager(
                coordinator=self._coordinator,
                config=self.config.tasks,
            )
            await self._background_tasks.start()

            logger.info("=" * 60)
            logger.info("Engine started successfully")
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 60)

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the engine gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._background_tasks:
            try:
                await self._background_tasks.stop()
            except Exception as e:
                logger.warning(f"Error stopping background tasks: {e}")

        if self._ticker:
            try:
                await self._ticker.stop()
            except Exception as e:
                logger.warning(f"Error stopping ticker: {e}")

        for client in (self._zeroex, self._coingecko):
            if client:
                try:
                    await client.close()
                except Exception as e:
                    logger.warning(f"Error closing HTTP client: {e}")

        if self._db:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")

        logger.info("Shutdown complete")

    async def request_shutdown(self, reason: str = "manual") -> None:
        """Request a graceful shutdown."""
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._running = False
        self._shutdown_event.set()

    async def _init_store(self):
        """Initialize the order and opportunity stores."""
        if self.config.store_backend == "memory":
            from defi_executor.storage import InMemoryOpportunityStore, InMemoryOrderStore

            logger.warning("Store: in-memory (single process only, state lost on exit)")
            return InMemoryOrderStore(), InMemoryOpportunityStore()

        from defi_executor.storage import (
            ArbitrageExecutionRepository,
            Database,
            DatabaseConfig,
            LimitOrderRepository,
        )

        if not self.config.database_url:
            raise ValueError("DATABASE_URL environment variable is required")

        self._db = Database(DatabaseConfig(url=self.config.database_url))
        await self._db.initialize()

        if not await self._db.health_check():
            raise RuntimeError("Database health check failed")

        if self.config.apply_schema:
            await self._db.apply_schema()

        logger.info("Database: Connected")
        return LimitOrderRepository(self._db), ArbitrageExecutionRepository(self._db)

    async def _init_pricing(self):
        """Initialize upstream clients, quote sources, consensus engine and scanner."""
        self._zeroex = ZeroExClient(
            api_key=self.config.zeroex_api_key,
            base_url=self.config.zeroex_api_url,
        )
        self._coingecko = CoinGeckoClient(base_url=self.config.coingecko_api_url)

        sources = [
            CoinGeckoPriceSource(self._coingecko, DEFAULT_TOKENS),
            ZeroExPriceSource(self._zeroex, DEFAULT_TOKENS),
        ]

        if self.config.ticker_enabled:
            self._ticker = TickerWebSocket(url=self.config.ticker_ws_url)
            symbols = {}
            for token in self._all_tokens():
                info = DEFAULT_TOKENS.get(token)
                if info is not None and info.stream_symbol:
                    symbols[token] = info.stream_symbol
            await self._ticker.subscribe(symbols)
            await self._ticker.start()
            sources.append(StreamingPriceSource(self._ticker))

        logger.info(f"Quote sources: {', '.join(s.name for s in sources)}")

        pricing = PriceConsensusEngine(sources, config=self.config.consensus)
        scanner = ArbitrageScanner(
            quoter=ZeroExRouteQuoter(self._zeroex, DEFAULT_TOKENS),
            cost_estimator=RouteGasEstimator(),
            pricing=pricing,
            config=self.config.arbitrage,
        )
        return pricing, scanner

    def _all_tokens(self) -> list[str]:
        tokens = list(self.config.tracked_tokens)
        for pair in self.config.arbitrage_pairs:
            tokens.extend([pair.base, pair.quote])
        tokens.append(self.config.arbitrage.native_asset)
        return list(dict.fromkeys(tokens))

    async def _run_loop(self) -> None:
        """Main run loop: wait for shutdown, logging stats periodically."""
        interval = self.config.stats_interval_seconds

        while self._running:
            try:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if self._coordinator:
                    stats = self._coordinator.stats
                    logger.info(
                        f"Stats: evaluated={stats.evaluated}, triggered={stats.triggered}, "
                        f"filled={stats.filled}, failed={stats.failed}, expired={stats.expired}, "
                        f"claim_lost={stats.claim_lost}, no_quorum={stats.skipped_no_quorum}, "
                        f"opportunities={stats.opportunities_found}"
                    )

            except Exception as e:
                logger.error(f"Error in main loop: {e}")
                await asyncio.sleep(5)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._running = False
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except (NotImplementedError, RuntimeError):
            # Windows, or not running in the main thread
            pass


async def run_forever(config: BotConfig, executor: Optional[Executor] = None) -> None:
    """Run the engine until a shutdown signal is received."""
    bot = ExecutorBot(config, executor=executor)
    await bot.start()


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="DeFi price-consensus and order-execution engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the paper executor (no real execution)",
    )
    parser.add_argument(
        "--store",
        choices=["postgres", "memory"],
        help="Override the store backend",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        config = BotConfig.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Override with command line args
    if args.dry_run:
        config.dry_run = True
    if args.store:
        config.store_backend = args.store

    if config.store_backend == "postgres" and not config.database_url:
        logger.error("DATABASE_URL environment variable is required (or use --store memory)")
        return 1

    if not config.dry_run:
        logger.error("Live execution requires an Executor supplied via run_forever()")
        logger.error("Set DRY_RUN=true or pass --dry-run to run with the paper executor")
        return 1

    try:
        await run_forever(config)
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
