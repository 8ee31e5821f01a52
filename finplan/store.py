"""
Financial output store.

Persists monthly series with SQLAlchemy 2.0 declarative models. A series is
keyed by (project_id, scenario_key, year, month); `scenario_key` is the
scenario id, or an empty string for the base case, so the natural key stays
unique on backends where NULLs never collide.

A calculation run replaces the whole series for its key in one transaction:
rows are upserted first, then rows for months outside the new series are
deleted. A failed replace rolls back and prior rows survive.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import (
    DateTime, Float, Integer, String, UniqueConstraint, create_engine, delete, func, select
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from .projection import MonthlyFinancialOutput

logger = logging.getLogger(__name__)

BASE_SCENARIO_KEY = ""

# Keeps each multi-row INSERT under SQLite's bound parameter limit
UPSERT_BATCH_SIZE = 30

# Dialects with an INSERT ... ON CONFLICT DO UPDATE construct
UPSERT_DIALECTS = {"postgresql": postgresql, "sqlite": sqlite}

# Columns copied one-to-one between the record and the row
VALUE_FIELDS = (
    "period_index",
    "revenue", "cogs", "gross_margin", "gross_margin_percent", "opex_total",
    "depreciation", "ebitda", "ebit", "net_income",
    "loan_payments", "interest_paid", "principal_repaid",
    "cash_flow", "cash_balance", "debt_balance", "net_fixed_assets",
    "ebitda_margin", "net_margin", "dscr", "debt_to_equity", "current_ratio",
)


class Base(DeclarativeBase):
    pass


class FinancialOutputRow(Base):
    """One month of a stored financial series."""
    __tablename__ = "financial_outputs"
    __table_args__ = (
        UniqueConstraint("project_id", "scenario_key", "year", "month", name="uq_financial_output_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    scenario_key: Mapped[str] = mapped_column(String(64), default=BASE_SCENARIO_KEY)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    period_index: Mapped[int] = mapped_column(Integer)

    revenue: Mapped[float] = mapped_column(Float)
    cogs: Mapped[float] = mapped_column(Float)
    gross_margin: Mapped[float] = mapped_column(Float)
    gross_margin_percent: Mapped[float] = mapped_column(Float)
    opex_total: Mapped[float] = mapped_column(Float)
    depreciation: Mapped[float] = mapped_column(Float)
    ebitda: Mapped[float] = mapped_column(Float)
    ebit: Mapped[float] = mapped_column(Float)
    net_income: Mapped[float] = mapped_column(Float)

    loan_payments: Mapped[float] = mapped_column(Float)
    interest_paid: Mapped[float] = mapped_column(Float)
    principal_repaid: Mapped[float] = mapped_column(Float)
    cash_flow: Mapped[float] = mapped_column(Float)
    cash_balance: Mapped[float] = mapped_column(Float)
    debt_balance: Mapped[float] = mapped_column(Float)
    net_fixed_assets: Mapped[float] = mapped_column(Float)

    ebitda_margin: Mapped[float] = mapped_column(Float)
    net_margin: Mapped[float] = mapped_column(Float)
    dscr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    debt_to_equity: Mapped[float] = mapped_column(Float)
    current_ratio: Mapped[float] = mapped_column(Float)

    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


def scenario_key(scenario_id: Optional[str]) -> str:
    return BASE_SCENARIO_KEY if scenario_id is None else str(scenario_id)


def _row_values(
    project_id: str,
    key: str,
    record: MonthlyFinancialOutput,
    calculated_at: datetime
) -> dict:
    values = {field: getattr(record, field) for field in VALUE_FIELDS}
    values.update(
        project_id=project_id,
        scenario_key=key,
        year=record.year,
        month=record.month,
        calculated_at=calculated_at,
    )
    return values


def _to_record(row: FinancialOutputRow) -> MonthlyFinancialOutput:
    return MonthlyFinancialOutput(
        project_id=row.project_id,
        scenario_id=row.scenario_key or None,
        year=row.year,
        month=row.month,
        **{field: getattr(row, field) for field in VALUE_FIELDS},
    )


class FinancialOutputStore:
    """SQLAlchemy-backed store of monthly financial series."""

    def __init__(self, engine: Engine):
        self.engine = engine
        Base.metadata.create_all(self.engine)

    @classmethod
    def from_url(cls, url: str = "sqlite:///finplan.db", echo: bool = False) -> "FinancialOutputStore":
        return cls(create_engine(url, echo=echo))

    def _insert(self):
        dialect = self.engine.dialect.name
        if dialect not in UPSERT_DIALECTS:
            raise ValueError(
                f"Unsupported database dialect for upsert: {dialect} "
                f"(supported: {', '.join(sorted(UPSERT_DIALECTS))})"
            )
        return UPSERT_DIALECTS[dialect].insert(FinancialOutputRow)

    def _key_filter(self, stmt, project_id: str, scenario_id: Optional[str]):
        return stmt.where(
            FinancialOutputRow.project_id == project_id,
            FinancialOutputRow.scenario_key == scenario_key(scenario_id),
        )

    def replace_outputs(
        self,
        project_id: str,
        scenario_id: Optional[str],
        outputs: Sequence[MonthlyFinancialOutput],
        calculated_at: Optional[datetime] = None
    ) -> int:
        """
        Replace the stored series for (project_id, scenario_id).

        Returns:
            Number of rows written
        """
        calculated_at = calculated_at or datetime.now(timezone.utc)
        key = scenario_key(scenario_id)
        rows = [_row_values(project_id, key, record, calculated_at) for record in outputs]
        period_keys = [record.year * 12 + record.month for record in outputs]

        with Session(self.engine) as session, session.begin():
            for start in range(0, len(rows), UPSERT_BATCH_SIZE):
                stmt = self._insert().values(rows[start:start + UPSERT_BATCH_SIZE])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["project_id", "scenario_key", "year", "month"],
                    set_={name: stmt.excluded[name] for name in VALUE_FIELDS + ("calculated_at",)},
                )
                session.execute(stmt)

            stale = self._key_filter(delete(FinancialOutputRow), project_id, scenario_id)
            if period_keys:
                stale = stale.where(
                    (FinancialOutputRow.year * 12 + FinancialOutputRow.month).not_in(period_keys)
                )
            removed = session.execute(stale).rowcount

        logger.info(
            "Stored %d rows for project=%s scenario=%s (%d stale removed)",
            len(rows), project_id, scenario_id or "base", removed,
        )
        return len(rows)

    def load_outputs(self, project_id: str, scenario_id: Optional[str] = None) -> List[MonthlyFinancialOutput]:
        """Stored series ordered by (year, month)."""
        stmt = self._key_filter(select(FinancialOutputRow), project_id, scenario_id)
        stmt = stmt.order_by(FinancialOutputRow.year, FinancialOutputRow.month)
        with Session(self.engine) as session:
            return [_to_record(row) for row in session.scalars(stmt)]

    def delete_outputs(self, project_id: str, scenario_id: Optional[str] = None) -> int:
        """Delete the stored series; returns the number of rows removed."""
        stmt = self._key_filter(delete(FinancialOutputRow), project_id, scenario_id)
        with Session(self.engine) as session, session.begin():
            removed = session.execute(stmt).rowcount
        logger.info("Deleted %d rows for project=%s scenario=%s", removed, project_id, scenario_id or "base")
        return removed

    def last_calculated_at(self, project_id: str, scenario_id: Optional[str] = None) -> Optional[datetime]:
        stmt = self._key_filter(select(func.max(FinancialOutputRow.calculated_at)), project_id, scenario_id)
        with Session(self.engine) as session:
            return session.scalar(stmt)

    def count_outputs(self, project_id: str, scenario_id: Optional[str] = None) -> int:
        stmt = self._key_filter(select(func.count(FinancialOutputRow.id)), project_id, scenario_id)
        with Session(self.engine) as session:
            return session.scalar(stmt) or 0

    def has_outputs(self, project_id: str, scenario_id: Optional[str] = None) -> bool:
        return self.count_outputs(project_id, scenario_id) > 0
