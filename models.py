from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CostCategory(str, Enum):
    food = "food"
    health = "health"
    housing = "housing"
    sport = "sport"
    education = "education"


# Order in which categories appear in every report.
REPORT_CATEGORY_ORDER: tuple[CostCategory, ...] = (
    CostCategory.food,
    CostCategory.education,
    CostCategory.health,
    CostCategory.housing,
    CostCategory.sport,
)


COST_CATEGORY_ENUM = SAEnum(
    CostCategory,
    name="costcategory",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("id >= 0", name="ck_users_id_non_negative"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    birthday: Mapped[Optional[date]] = mapped_column(Date)
    marital_status: Mapped[Optional[str]] = mapped_column(String(40))
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class Cost(Base, TimestampMixin):
    __tablename__ = "costs"
    __table_args__ = (Index("ix_costs_userid_date", "userid", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[CostCategory] = mapped_column(COST_CATEGORY_ENUM, nullable=False)
    sum: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Report(Base, TimestampMixin):
    """Materialized monthly report, one row per (userid, year, month)."""

    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint("userid", "year", "month", name="uq_report_user_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    userid: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    costs: Mapped[list] = mapped_column(JSON, nullable=False)
