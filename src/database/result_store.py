"""
Durable tabular store of completed backtest runs
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, create_engine, distinct, event, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from src.backtest_cache.exceptions import QueryError
from src.backtest_cache.models import ResultRow
from src.config.config_manager import get_config
from src.config.paths import get_results_database_url

from .models import BacktestRun, Base

if TYPE_CHECKING:  # pragma: no cover
    import pandas as pd
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Logical field names (snake_case or the dashboard's camelCase) -> column
_COLUMNS = {
    "asset": BacktestRun.asset,
    "strategy": BacktestRun.strategy,
    "timeframe": BacktestRun.timeframe,
    "leverage": BacktestRun.leverage,
    "short_threshold": BacktestRun.short_threshold,
    "shortThreshold": BacktestRun.short_threshold,
    "long_threshold": BacktestRun.long_threshold,
    "longThreshold": BacktestRun.long_threshold,
    "run_id": BacktestRun.run_id,
    "sharpe_ratio": BacktestRun.sharpe_ratio,
    "sharpeRatio": BacktestRun.sharpe_ratio,
    "max_drawdown": BacktestRun.max_drawdown,
    "maxDrawdown": BacktestRun.max_drawdown,
    "win_rate": BacktestRun.win_rate,
    "winRate": BacktestRun.win_rate,
    "time_in_market": BacktestRun.time_in_market,
    "timeInMarket": BacktestRun.time_in_market,
    "num_trades": BacktestRun.num_trades,
    "trades": BacktestRun.num_trades,
    "fees": BacktestRun.fees,
    "funding": BacktestRun.funding,
    "total_return": BacktestRun.total_return,
    "totalReturn": BacktestRun.total_return,
    "execution_time_ms": BacktestRun.execution_time_ms,
}

# 90-day sweeps: monthly return approximated as a third of the total
_TOP_SORT_KEYS = {
    "totalReturn": BacktestRun.total_return,
    "sharpeRatio": BacktestRun.sharpe_ratio,
    "monthlyReturn": BacktestRun.total_return / 3,
}


@dataclass(frozen=True)
class MetricRange:
    min: float | None
    max: float | None

    @property
    def is_empty(self) -> bool:
        return self.min is None or self.max is None

    def to_dict(self) -> dict[str, float | None]:
        return {"min": self.min, "max": self.max}


def risk_level(leverage: int, max_drawdown: float, liquidations: int) -> str:
    """Coarse risk bucket shown next to top strategies."""
    if liquidations > 0:
        return "extreme"
    if abs(max_drawdown) > 80:
        return "very-high"
    if leverage >= 8:
        return "high"
    if leverage >= 5:
        return "medium"
    return "low"


def _column(field: str):
    column = _COLUMNS.get(field)
    if column is None:
        raise QueryError(f"Unknown result store field: {field!r}")
    return column


class ResultStore:
    """
    Insert-only store of backtest runs with distinct/range queries.

    Features:
    - SQLite (file or in-memory) or PostgreSQL via SQLAlchemy
    - Per-field indexes on every filterable and ranged column
    - Batched appends for parameter sweeps
    - Distinct value, threshold pair and min/max range queries
    """

    def __init__(self, database_url: str | None = None):
        """
        Args:
            database_url: SQLAlchemy URL. If None, BACKTEST_RESULTS_DATABASE_URL from
                configuration is used, falling back to the project SQLite file.
        """
        if database_url is None:
            database_url = (
                get_config().get("BACKTEST_RESULTS_DATABASE_URL") or get_results_database_url()
            )
        self.database_url = database_url
        self.engine: Engine | None = None
        self.session_factory: sessionmaker | None = None

        self._init_database()
        self._create_tables()

    def _init_database(self) -> None:
        is_sqlite = self.database_url.startswith("sqlite:")
        is_postgres = self.database_url.startswith("postgresql")
        if not (is_sqlite or is_postgres):
            raise QueryError(
                "Result store supports sqlite:// and postgresql:// URLs, "
                f"got: {self.database_url[:20]}..."
            )

        if is_postgres:
            engine_kwargs = self._get_engine_config()
        else:
            engine_kwargs = self._sqlite_engine_config(self.database_url)

        try:
            self.engine = create_engine(self.database_url, **engine_kwargs)
            if is_sqlite:
                event.listen(self.engine, "connect", self._sqlite_on_connect)
            self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(
                "Result store connection established (%s)",
                "PostgreSQL" if is_postgres else "SQLite",
            )
        except SQLAlchemyError as e:
            logger.error("Failed to initialize result store: %s", e)
            raise QueryError(f"Result store unreachable: {e}") from e

    @staticmethod
    def _sqlite_engine_config(url: str) -> dict[str, Any]:
        in_memory = url.endswith(":memory:") or url in ("sqlite://", "sqlite:///")
        if not in_memory:
            db_path = Path(url.split("sqlite:///", 1)[-1])
            try:
                db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Cannot create result store directory %s: %s", db_path.parent, e)
                raise QueryError(f"Result store unreachable: {e}") from e
        engine_kwargs: dict[str, Any] = {
            "pool_pre_ping": True,
            "echo": False,
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
        if in_memory:
            # one shared connection so every session sees the same memory DB
            engine_kwargs["poolclass"] = StaticPool
        return engine_kwargs

    @staticmethod
    def _sqlite_on_connect(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        finally:
            cursor.close()

    def _get_engine_config(self) -> dict[str, Any]:
        """Get PostgreSQL engine configuration"""
        return {
            "poolclass": QueuePool,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "echo": False,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "backtest-result-cache",
            },
        }

    def _create_tables(self) -> None:
        if self.engine is None:
            raise QueryError("Result store engine not initialized")
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error("Error creating result store tables: %s", e)
            raise QueryError(f"Cannot create result store schema: {e}") from e

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Yields:
            SQLAlchemy session
        """
        if self.session_factory is None:
            raise QueryError("Session factory not initialized")

        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Result store session error: %s", e)
            raise QueryError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()

    # --- Writes ---

    @staticmethod
    def _to_model(row: ResultRow) -> BacktestRun:
        return BacktestRun(
            run_id=row.run_id,
            timestamp=row.timestamp,
            fingerprint=row.fingerprint,
            asset=row.asset,
            strategy=row.strategy,
            timeframe=row.timeframe,
            leverage=row.leverage,
            short_threshold=row.short_threshold,
            long_threshold=row.long_threshold,
            extreme_low_threshold=row.extreme_low_threshold,
            extreme_high_threshold=row.extreme_high_threshold,
            max_position_ratio=row.max_position_ratio,
            sharpe_ratio=row.sharpe_ratio,
            max_drawdown=row.max_drawdown,
            win_rate=row.win_rate,
            time_in_market=row.time_in_market,
            num_trades=row.num_trades,
            fees=row.fees,
            funding=row.funding,
            total_return=row.total_return,
            liquidations=row.liquidations,
            execution_time_ms=row.execution_time_ms,
            extras=row.extras,
        )

    def append(self, row: ResultRow) -> int:
        """
        Durably insert one run.

        Returns:
            The new row id
        """
        return self.append_many([row])[0]

    def append_many(self, rows: Iterable[ResultRow]) -> list[int]:
        """Insert a batch of runs in one transaction; returns their row ids in order."""
        models = [self._to_model(r) for r in rows]
        if not models:
            return []
        with self.get_session() as session:
            session.add_all(models)
            session.commit()
            ids = [int(m.id) for m in models]
        logger.debug("Appended %d backtest rows", len(ids))
        return ids

    # --- Queries ---

    def count(self) -> int:
        with self.get_session() as session:
            return int(session.scalar(select(func.count(BacktestRun.id))) or 0)

    def query_distinct(self, field: str) -> list[Any]:
        """Ascending unique non-null values of one field."""
        column = _column(field)
        stmt = select(distinct(column)).where(column.is_not(None)).order_by(column.asc())
        with self.get_session() as session:
            return list(session.scalars(stmt).all())

    def query_distinct_pairs(self, first: str, second: str) -> list[tuple[Any, Any]]:
        """Unique (first, second) combinations sorted by first then second."""
        a, b = _column(first), _column(second)
        stmt = select(a, b).distinct().order_by(a.asc(), b.asc())
        with self.get_session() as session:
            return [(row[0], row[1]) for row in session.execute(stmt).all()]

    def query_ranges(self, fields: Sequence[str]) -> dict[str, MetricRange]:
        """Min/max of each field in a single scan; bounds are None on an empty store."""
        columns = [(name, _column(name)) for name in fields]
        if not columns:
            return {}
        aggregates = []
        for _name, column in columns:
            aggregates.extend([func.min(column), func.max(column)])
        with self.get_session() as session:
            row = session.execute(select(*aggregates)).one()
        return {
            name: MetricRange(
                min=float(row[2 * i]) if row[2 * i] is not None else None,
                max=float(row[2 * i + 1]) if row[2 * i + 1] is not None else None,
            )
            for i, (name, _column_) in enumerate(columns)
        }

    def top_runs(
        self, limit: int = 10, sort_by: str = "totalReturn", asset: str | None = None
    ) -> dict[str, Any]:
        """Best runs by total return, Sharpe ratio or approximate monthly return."""
        if limit <= 0:
            raise QueryError("limit must be positive")
        order_column = _TOP_SORT_KEYS.get(sort_by, BacktestRun.total_return)

        stmt = select(BacktestRun)
        count_stmt = select(func.count(BacktestRun.id))
        if asset and asset.lower() != "all":
            stmt = stmt.where(BacktestRun.asset == asset.upper())
            count_stmt = count_stmt.where(BacktestRun.asset == asset.upper())
        stmt = stmt.order_by(order_column.desc(), BacktestRun.id.asc()).limit(limit)

        with self.get_session() as session:
            runs = list(session.scalars(stmt).all())
            total = int(session.scalar(count_stmt) or 0)

        strategies = []
        for run in runs:
            item = run.to_dict()
            item["monthlyReturn"] = run.total_return / 3
            item["riskLevel"] = risk_level(run.leverage, run.max_drawdown, run.liquidations)
            item["isRecommended"] = (
                run.sharpe_ratio > 1 and run.win_rate > 50 and run.liquidations == 0
            )
            strategies.append(item)
        return {"strategies": strategies, "totalStrategiesAnalyzed": total}

    def summary(self) -> dict[str, Any]:
        """Aggregate statistics over every stored run."""
        stmt = select(
            func.count(BacktestRun.id),
            func.count(distinct(BacktestRun.run_id)),
            func.avg(BacktestRun.total_return),
            func.max(BacktestRun.total_return),
            func.min(BacktestRun.total_return),
            func.avg(BacktestRun.sharpe_ratio),
            func.max(BacktestRun.sharpe_ratio),
            func.avg(BacktestRun.max_drawdown),
            func.sum(case((BacktestRun.total_return > 0, 1), else_=0)),
        )
        with self.get_session() as session:
            row = session.execute(stmt).one()

        total = int(row[0] or 0)
        return {
            "total_records": total,
            "total_runs": int(row[1] or 0),
            "avg_return": row[2],
            "max_return": row[3],
            "min_return": row[4],
            "avg_sharpe": row[5],
            "max_sharpe": row[6],
            "avg_drawdown": row[7],
            "profitable_pct": (float(row[8] or 0) * 100.0 / total) if total else 0.0,
        }

    def to_dataframe(self, asset: str | None = None) -> pd.DataFrame:
        """All runs (optionally one asset) as a DataFrame for offline analysis."""
        import pandas as pd

        stmt = select(BacktestRun.__table__).order_by(BacktestRun.id.asc())
        if asset:
            stmt = stmt.where(BacktestRun.asset == asset.upper())
        if self.engine is None:
            raise QueryError("Result store engine not initialized")
        try:
            with self.engine.connect() as conn:
                return pd.read_sql(stmt, conn)
        except SQLAlchemyError as e:
            raise QueryError(str(e)) from e
