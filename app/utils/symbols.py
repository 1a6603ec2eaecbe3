"""Ticker symbol normalization and validation."""
import re


# 1-10 characters: letters, digits, dot or dash (BRK.B, RDS-A)
SYMBOL_PATTERN = re.compile(r'^[A-Z0-9][A-Z0-9.\-]{0,9}$')


def canonicalize_symbol(symbol: str) -> str:
    """Canonical form of a ticker symbol: trimmed and uppercased."""
    return symbol.strip().upper()


def validate_symbol(symbol) -> str:
    """
    Validate and normalize a ticker symbol.

    Args:
        symbol: Raw symbol from a client or upstream payload

    Returns:
        Canonical symbol

    Raises:
        ValueError: If the symbol is not a string, is blank or malformed
    """
    if not isinstance(symbol, str):
        raise ValueError(f"Symbol must be a string, got {type(symbol).__name__}")

    normalized = canonicalize_symbol(symbol)

    if not normalized:
        raise ValueError("Symbol cannot be empty")

    if not SYMBOL_PATTERN.match(normalized):
        raise ValueError(f"Invalid symbol format: '{symbol}'")

    return normalized
