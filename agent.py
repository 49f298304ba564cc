"""Main entry point: wires all layers together."""
import asyncio
import signal
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

from shared.config import Config
from shared.logging import setup_logging
from shared.ollama_client import OllamaClient
from advisor.trading_agent import TradingAgent
from feeds.market_prices import MarketPriceFeed
from execution.chain_client import PaperChainClient
from execution.trade_recorder import TradeRecorder
from execution.trading_cycle import TradingCycle
from ledger.lot_matcher import LotMatcher
from ledger.positions import PositionAggregator
from ledger.reconstructor import DashboardReconstructor
from ledger.snapshots import SnapshotRecorder
from storage.db import LedgerStore, open_ledger_store
from dashboard.main import create_app

logger = setup_logging("trading-agent")


class TradingService:
    """Runs the trading cycle on an interval next to the dashboard."""

    def __init__(self, config: Config):
        self.config = config
        self._shutdown = asyncio.Event()

        # Components (initialized in start())
        self.store: LedgerStore | None = None
        self.cycle: TradingCycle | None = None
        self.reconstructor: DashboardReconstructor | None = None

    async def build(self):
        """Open the ledger and wire the services."""
        self.store = await open_ledger_store(self.config.DB_PATH)
        await self.store.ensure_schema()

        if self.config.is_live:
            logger.info("Live trading not yet implemented, using paper chain client")
        chain = PaperChainClient.with_usdc(self.config.ACCOUNT_ID, self.config.PAPER_USDC_BALANCE)

        price_feed = MarketPriceFeed(self.config.MARKET_API_URL, self.config.market_symbols_list)
        ollama = OllamaClient(
            host=self.config.OLLAMA_HOST,
            model=self.config.LLM_MODEL,
            api_key=self.config.OLLAMA_API_KEY,
        )
        if not await ollama.is_available():
            logger.warning(
                "Ollama not reachable, decisions will HOLD until it is",
                extra={"host": self.config.OLLAMA_HOST},
            )
        aggregator = PositionAggregator(self.store, self.config.DUST_THRESHOLD)

        self.cycle = TradingCycle(
            store=self.store,
            chain=chain,
            price_feed=price_feed,
            agent=TradingAgent(ollama, self.config.LLM_MODEL),
            aggregator=aggregator,
            recorder=TradeRecorder(LotMatcher(self.store)),
            snapshots=SnapshotRecorder(self.store),
            strategy=self.config.strategy,
            settlement_delay=self.config.SETTLEMENT_DELAY_SECONDS,
        )
        self.reconstructor = DashboardReconstructor(
            self.store,
            price_feed,
            trade_limit=self.config.TRADE_HISTORY_LIMIT,
            chart_points=self.config.CHART_POINTS,
            context_window=timedelta(minutes=self.config.TRADE_CONTEXT_WINDOW_MINUTES),
        )

    async def start(self):
        """Initialize and run all components."""
        logger.info(
            "Starting trading agent",
            extra={
                "mode": self.config.TRADING_MODE,
                "account_id": self.config.ACCOUNT_ID,
                "symbols": self.config.market_symbols_list,
                "interval_s": self.config.CYCLE_INTERVAL_SECONDS,
            },
        )
        await self.build()

        tasks = [
            asyncio.create_task(self._cycle_loop(), name="cycle"),
            asyncio.create_task(self._run_dashboard(), name="dashboard"),
        ]

        logger.info("All components started")

        await self._shutdown.wait()

        logger.info("Shutting down...")
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.store.close()
        logger.info("Shutdown complete")

    async def _cycle_loop(self):
        """Run one trading cycle per interval until shutdown."""
        while not self._shutdown.is_set():
            try:
                result = await self.cycle.run(self.config.ACCOUNT_ID)
                logger.info(
                    "Cycle complete",
                    extra={
                        "trade_id": result.trade_id,
                        "snapshot_id": result.snapshot_id,
                        "tx_hash": result.tx_hash,
                        "total_usd": f"${result.total_usd:.2f}",
                    },
                )
            except Exception as e:
                logger.error(f"Trading cycle failed: {e}")

            try:
                await asyncio.wait_for(
                    self._shutdown.wait(), timeout=self.config.CYCLE_INTERVAL_SECONDS
                )
            except asyncio.TimeoutError:
                continue

    async def _run_dashboard(self):
        """Run the FastAPI dashboard."""
        import uvicorn
        app = create_app(
            self.reconstructor,
            trading_cycle=self.cycle,
            account_id=self.config.ACCOUNT_ID,
            cron_secret=self.config.CRON_SECRET,
        )
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.DASHBOARD_PORT,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        logger.info(
            "Dashboard starting",
            extra={"port": self.config.DASHBOARD_PORT},
        )
        await server.serve()

    def shutdown(self):
        self._shutdown.set()


def main():
    config = Config.from_env()
    setup_logging("trading-agent", config.LOG_LEVEL)

    service = TradingService(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        service.shutdown()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        service.shutdown()
        loop.run_until_complete(asyncio.sleep(1))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
