"""Stored quote model: latest known snapshot per symbol."""
from sqlalchemy import Column, String, Float, BigInteger, DateTime, Boolean
from datetime import datetime, timezone
from app.core.database import Base


class Stock(Base):
    """Latest quote persisted for a ticker symbol."""

    __tablename__ = "stocks"

    symbol = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=True)
    exchange = Column(String, nullable=True)
    current_price = Column(Float, nullable=False)
    previous_close = Column(Float, nullable=True)
    change = Column(Float, nullable=False, default=0.0)
    change_percent = Column(Float, nullable=False, default=0.0)
    volume = Column(BigInteger, nullable=True)
    market_cap = Column(BigInteger, nullable=True)
    pe_ratio = Column(Float, nullable=True)
    dividend_yield = Column(Float, nullable=True)
    source = Column(String, nullable=True)
    last_updated = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    is_active = Column(Boolean, default=True, nullable=False)
