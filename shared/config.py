"""Configuration management for the trading agent."""
import json
import logging
import os

from pydantic import BaseModel, ValidationError

from shared.schemas import StrategyConfig

logger = logging.getLogger(__name__)

DEFAULT_MARKET_API_URL = "https://trading-agent-kappa.vercel.app/api/tools/market-overview"
DEFAULT_MARKET_SYMBOLS = (
    "BTCUSDT,ETHUSDT,BNBUSDT,SOLUSDT,NEARUSDT,ARBUSDT,SUIUSDT,PEPEUSDT,WIFUSDT"
)


class Config(BaseModel):
    """Application configuration loaded from environment variables."""
    TRADING_MODE: str = "paper"
    ACCOUNT_ID: str = "trading-agent.near"
    DB_PATH: str = "data/ledger.db"
    OLLAMA_HOST: str = "https://ollama.com"
    OLLAMA_API_KEY: str = ""
    LLM_MODEL: str = "gpt-oss:120b"
    MARKET_API_URL: str = DEFAULT_MARKET_API_URL
    MARKET_SYMBOLS: str = DEFAULT_MARKET_SYMBOLS
    CRON_SECRET: str = ""
    CYCLE_INTERVAL_SECONDS: int = 300
    SETTLEMENT_DELAY_SECONDS: float = 20.0
    DASHBOARD_PORT: int = 8080
    TRADE_HISTORY_LIMIT: int = 100
    CHART_POINTS: int = 500
    TRADE_CONTEXT_WINDOW_MINUTES: int = 60
    DUST_THRESHOLD: float = 0.0001
    PAPER_USDC_BALANCE: float = 1000.0
    LOG_LEVEL: str = "INFO"
    STRATEGY: str = ""

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            TRADING_MODE=os.getenv("TRADING_MODE", "paper"),
            ACCOUNT_ID=os.getenv("ACCOUNT_ID", "trading-agent.near"),
            DB_PATH=os.getenv("DB_PATH", "data/ledger.db"),
            OLLAMA_HOST=os.getenv("OLLAMA_HOST", "https://ollama.com"),
            OLLAMA_API_KEY=os.getenv("OLLAMA_API_KEY", ""),
            LLM_MODEL=os.getenv("LLM_MODEL", "gpt-oss:120b"),
            MARKET_API_URL=os.getenv("MARKET_API_URL", DEFAULT_MARKET_API_URL),
            MARKET_SYMBOLS=os.getenv("MARKET_SYMBOLS", DEFAULT_MARKET_SYMBOLS),
            CRON_SECRET=os.getenv("CRON_SECRET", ""),
            CYCLE_INTERVAL_SECONDS=int(os.getenv("CYCLE_INTERVAL_SECONDS", "300")),
            SETTLEMENT_DELAY_SECONDS=float(os.getenv("SETTLEMENT_DELAY_SECONDS", "20")),
            DASHBOARD_PORT=int(os.getenv("DASHBOARD_PORT", "8080")),
            TRADE_HISTORY_LIMIT=int(os.getenv("TRADE_HISTORY_LIMIT", "100")),
            CHART_POINTS=int(os.getenv("CHART_POINTS", "500")),
            TRADE_CONTEXT_WINDOW_MINUTES=int(os.getenv("TRADE_CONTEXT_WINDOW_MINUTES", "60")),
            DUST_THRESHOLD=float(os.getenv("DUST_THRESHOLD", "0.0001")),
            PAPER_USDC_BALANCE=float(os.getenv("PAPER_USDC_BALANCE", "1000")),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            STRATEGY=os.getenv("STRATEGY", ""),
        )

    @property
    def market_symbols_list(self) -> list[str]:
        return [s.strip().upper() for s in self.MARKET_SYMBOLS.split(",") if s.strip()]

    @property
    def is_live(self) -> bool:
        return self.TRADING_MODE == "live"

    @property
    def strategy(self) -> StrategyConfig:
        """Parsed STRATEGY JSON, or the default strategy when unset or invalid."""
        if not self.STRATEGY.strip():
            return StrategyConfig()
        try:
            return StrategyConfig(**json.loads(self.STRATEGY))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Invalid STRATEGY config, using default: {e}")
            return StrategyConfig()
