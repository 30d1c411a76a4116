"""
Database models for completed backtest runs
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from src.config.constants import RESULTS_TABLE_NAME


# Portable JSON that chooses JSONB on PostgreSQL and JSON elsewhere (e.g., SQLite)
class PortableJSON(TypeDecorator):
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB

            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


# Type Base as Any to allow mypy to accept dynamic SQLAlchemy base class
Base: Any = declarative_base()


def utc_now() -> datetime:
    """Return an aware UTC timestamp for database defaults."""
    return datetime.now(UTC)


class BacktestRun(Base):
    """One completed backtest run; insert-only"""

    __tablename__ = RESULTS_TABLE_NAME

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(64), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    fingerprint = Column(String(64), nullable=True, index=True)

    # Parameters
    asset = Column(String(20), nullable=False, index=True)
    strategy = Column(String(32), nullable=False, index=True)
    timeframe = Column(String(8), nullable=False, index=True)
    leverage = Column(Integer, nullable=False, index=True)
    short_threshold = Column(Float, nullable=False)
    long_threshold = Column(Float, nullable=False)
    extreme_low_threshold = Column(Float)
    extreme_high_threshold = Column(Float)
    max_position_ratio = Column(Float)

    # Metrics
    sharpe_ratio = Column(Float, nullable=False, index=True)
    max_drawdown = Column(Float, nullable=False, index=True)  # signed, <= 0
    win_rate = Column(Float, nullable=False, index=True)
    time_in_market = Column(Float, nullable=False, index=True)
    num_trades = Column(Integer, nullable=False, index=True)
    fees = Column(Float, nullable=False, index=True)
    funding = Column(Float, nullable=False, index=True)
    total_return = Column(Float, nullable=False, index=True)
    liquidations = Column(Integer, nullable=False, default=0)
    execution_time_ms = Column(Float)

    extras = Column(PortableJSON)

    __table_args__ = (
        Index("idx_backtests_thresholds", "short_threshold", "long_threshold"),
        Index("idx_backtests_params", "asset", "strategy", "leverage"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "runId": self.run_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "fingerprint": self.fingerprint,
            "asset": self.asset,
            "strategy": self.strategy,
            "timeframe": self.timeframe,
            "leverage": self.leverage,
            "shortThreshold": self.short_threshold,
            "longThreshold": self.long_threshold,
            "sharpeRatio": self.sharpe_ratio,
            "maxDrawdown": self.max_drawdown,
            "winRate": self.win_rate,
            "timeInMarket": self.time_in_market,
            "totalTrades": self.num_trades,
            "fees": self.fees,
            "funding": self.funding,
            "totalReturn": self.total_return,
            "liquidations": self.liquidations,
        }
