"""Small numeric and symbol helpers shared across layers."""

# Wrapped-token symbols collapsed to the underlying asset they track
ASSET_ALIASES = {
    "wNEAR": "NEAR",
    "$WIF": "WIF",
}


def round_to_two(value: float) -> float:
    """Round a USD-facing value for storage or display."""
    return round(float(value or 0.0), 2)


def normalize_asset(asset: str) -> str:
    return ASSET_ALIASES.get(asset, asset)


def safe_percent(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 when the denominator is not positive."""
    if denominator is None or denominator <= 0:
        return 0.0
    return numerator / denominator * 100.0
