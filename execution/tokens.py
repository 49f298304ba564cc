"""Supported intents tokens and their asset ids."""
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from shared.utils import normalize_asset

UNKNOWN_SYMBOL = "UNKNOWN"
USDC_SYMBOL = "USDC"


@dataclass(frozen=True)
class Token:
    """A swappable token on the intents contract."""
    asset_id: str
    decimals: int
    blockchain: str
    symbol: str
    contract_address: Optional[str] = None


TOKEN_LIST: list[Token] = [
    Token("nep141:wrap.near", 24, "near", "wNEAR", "wrap.near"),
    Token("nep141:eth.omft.near", 18, "eth", "ETH"),
    Token("nep141:sui.omft.near", 9, "sui", "SUI"),
    Token("nep141:btc.omft.near", 8, "btc", "BTC"),
    Token("nep141:sol.omft.near", 9, "sol", "SOL"),
    Token(
        "nep141:arb-0x912ce59144191c1204e64559fe8253a0e49e6548.omft.near", 18, "arb", "ARB",
        "0x912ce59144191c1204e64559fe8253a0e49e6548",
    ),
    Token("nep141:base.omft.near", 18, "base", "ETH"),
    Token("nep245:v2_1.omni.hot.tg:43114_11111111111111111111", 18, "avax", "AVAX"),
    Token("nep141:nbtc.bridge.near", 8, "near", "BTC", "nbtc.bridge.near"),
    Token("nep245:v2_1.omni.hot.tg:10_11111111111111111111", 18, "op", "ETH"),
    Token(
        "nep141:17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1", 6, "near", "USDC",
        "17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1",
    ),
    Token("nep245:v2_1.omni.hot.tg:56_11111111111111111111", 18, "bsc", "BNB"),
    Token(
        "nep245:v2_1.omni.hot.tg:56_12zbnsg6xndDVj25QyL82YMPudb", 18, "bsc", "ASTER",
        "0x000ae314e2a2172a039b26378814c252734f556a",
    ),
    Token("nep245:v2_1.omni.hot.tg:137_11111111111111111111", 18, "pol", "POL"),
]

_BY_ASSET_ID = {t.asset_id: t for t in TOKEN_LIST}


def token_by_asset_id(asset_id: str) -> Optional[Token]:
    return _BY_ASSET_ID.get(asset_id)


def token_by_symbol(symbol: str) -> Optional[Token]:
    """First listed token for a symbol; wrapped aliases match their underlying."""
    wanted = normalize_asset(symbol).upper()
    for token in TOKEN_LIST:
        if normalize_asset(token.symbol).upper() == wanted:
            return token
    return None


def symbol_for(asset_id: str) -> str:
    """Normalized symbol for an asset id, UNKNOWN when not listed."""
    token = token_by_asset_id(asset_id)
    return normalize_asset(token.symbol) if token else UNKNOWN_SYMBOL


def to_raw(amount: float, decimals: int) -> int:
    """Formatted amount -> integer base units (exact for any decimals)."""
    return int(Decimal(str(amount)).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def from_raw(raw: int, decimals: int) -> float:
    return float(Decimal(raw).scaleb(-decimals))
