"""Utilities package initialization."""
from app.utils.symbols import canonicalize_symbol, validate_symbol
from app.utils.time import utc_now, utc_now_iso, epoch_millis

__all__ = ["canonicalize_symbol", "validate_symbol", "utc_now", "utc_now_iso", "epoch_millis"]
