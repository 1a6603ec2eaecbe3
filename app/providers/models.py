"""Data models for quote snapshots."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from app.utils.time import utc_now


@dataclass(frozen=True)
class QuoteResult:
    """Immutable price snapshot for one symbol."""
    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int
    timestamp: datetime = field(default_factory=utc_now)
    name: Optional[str] = None
    exchange: Optional[str] = None
    previous_close: Optional[float] = None
    market_cap: Optional[int] = None
    pe_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    source: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize for the wire."""
        return {
            "symbol": self.symbol,
            "name": self.name,
            "exchange": self.exchange,
            "price": self.price,
            "previousClose": self.previous_close,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "marketCap": self.market_cap,
            "peRatio": self.pe_ratio,
            "dividendYield": self.dividend_yield,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteResult":
        """Rebuild a QuoteResult from ``to_dict`` output (cache round trip)."""
        return cls(
            symbol=data["symbol"],
            price=float(data["price"]),
            change=float(data.get("change") or 0.0),
            change_percent=float(data.get("changePercent") or 0.0),
            volume=int(data.get("volume") or 0),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            name=data.get("name"),
            exchange=data.get("exchange"),
            previous_close=data.get("previousClose"),
            market_cap=data.get("marketCap"),
            pe_ratio=data.get("peRatio"),
            dividend_yield=data.get("dividendYield"),
            source=data.get("source"),
        )


@dataclass(frozen=True)
class QuoteFailure:
    """Typed failure for one symbol."""
    symbol: str
    reason: str

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "error": self.reason}


@dataclass
class FetchManyResult:
    """Outcome of a multi-symbol fetch: successes and per-symbol failures."""
    results: List[QuoteResult] = field(default_factory=list)
    failures: List[QuoteFailure] = field(default_factory=list)

    def extend(self, other: "FetchManyResult") -> None:
        self.results.extend(other.results)
        self.failures.extend(other.failures)

    @property
    def symbols_resolved(self) -> List[str]:
        return [r.symbol for r in self.results]

    @property
    def symbols_failed(self) -> List[str]:
        return [f.symbol for f in self.failures]
