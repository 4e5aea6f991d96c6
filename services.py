from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import StoreFailure, UserNotFound
from models import REPORT_CATEGORY_ORDER, Cost, CostCategory, Report, User
from periods import is_representable_year, local_now, month_window, window_for
from schemas import CostIn, ReportItem, UserIn
from validation import check_report_period

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonthlySummary:
    userid: int
    year: int
    month: int
    costs: tuple[tuple[CostCategory, tuple[ReportItem, ...]], ...]

    def costs_payload(self) -> list[dict[str, list[dict[str, object]]]]:
        return [
            {category.value: [item.model_dump() for item in items]}
            for category, items in self.costs
        ]

    def to_payload(self) -> dict[str, object]:
        return {
            "userid": self.userid,
            "year": self.year,
            "month": self.month,
            "costs": self.costs_payload(),
        }

    @classmethod
    def from_report(cls, report: Report) -> MonthlySummary:
        """Rebuild a summary from a stored report.

        Raises ValueError when the stored costs are not in the shape written by
        ``costs_payload``.
        """
        if not isinstance(report.costs, list):
            raise ValueError("report costs must be a list")
        pairs: list[tuple[CostCategory, tuple[ReportItem, ...]]] = []
        for entry in report.costs:
            if not isinstance(entry, dict):
                raise ValueError("report entry must be an object")
            for key, items in entry.items():
                if not isinstance(items, list):
                    raise ValueError(f"report items for {key} must be a list")
                try:
                    category = CostCategory(key)
                except ValueError:
                    logger.warning(
                        f"report_unknown_category: userid={report.userid} "
                        f"year={report.year} month={report.month} category={key}"
                    )
                    continue
                pairs.append(
                    (category, tuple(ReportItem.model_validate(i) for i in items))
                )
        return cls(
            userid=report.userid,
            year=report.year,
            month=report.month,
            costs=tuple(pairs),
        )


@dataclass(frozen=True)
class ReportLookup:
    summary: MonthlySummary
    from_cache: bool


def aggregate_month(
    session: Session, user_id: int, year: int, month: int
) -> MonthlySummary:
    buckets: dict[CostCategory, list[ReportItem]] = {
        category: [] for category in REPORT_CATEGORY_ORDER
    }
    if is_representable_year(year):
        window = month_window(year, month)
        rows = session.execute(
            select(Cost.category, Cost.sum, Cost.description, Cost.date)
            .where(
                Cost.userid == user_id,
                Cost.date >= window.start,
                Cost.date < window.end,
            )
            .order_by(Cost.id)
        ).all()
        for category, amount, description, occurred_at in rows:
            bucket = buckets.get(category)
            if bucket is None:
                logger.warning(
                    f"aggregate_unknown_category: userid={user_id} "
                    f"period={window.slug} category={category}"
                )
                continue
            bucket.append(
                ReportItem(sum=amount, description=description, day=occurred_at.day)
            )

    return MonthlySummary(
        userid=user_id,
        year=year,
        month=month,
        costs=tuple(
            (category, tuple(buckets[category])) for category in REPORT_CATEGORY_ORDER
        ),
    )


def invalidate_report(session: Session, user_id: int, year: int, month: int) -> int:
    result = session.execute(
        delete(Report).where(
            Report.userid == user_id,
            Report.year == year,
            Report.month == month,
        )
    )
    return result.rowcount or 0


class UserRegistry:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists(self, user_id: int) -> bool:
        return bool(self.session.scalar(select(exists().where(User.id == user_id))))

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound(user_id)
        return user

    def create(self, data: UserIn) -> User:
        if self.exists(data.id):
            raise ValueError("User already exists")
        user = User(
            id=data.id,
            first_name=data.first_name,
            last_name=data.last_name,
            birthday=data.birthday,
            marital_status=data.marital_status,
            total=0.0,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class LedgerService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def compute_total(self, user_id: int) -> float:
        return float(
            self.session.execute(
                select(func.coalesce(func.sum(Cost.sum), 0.0)).where(
                    Cost.userid == user_id
                )
            ).scalar_one()
            or 0.0
        )

    def recompute_total(self, user_id: int) -> float:
        """Store the full sum of the user's costs as their total. Does not commit."""
        total = self.compute_total(user_id)
        self.session.execute(update(User).where(User.id == user_id).values(total=total))
        return total

    def reconcile_all(self) -> int:
        user_ids = self.session.scalars(select(User.id).order_by(User.id)).all()
        try:
            for user_id in user_ids:
                self.recompute_total(user_id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("ledger_reconcile_failed")
            raise StoreFailure("failed to reconcile user totals") from exc
        logger.info(f"ledger_reconciled: users={len(user_ids)}")
        return len(user_ids)

    def purge_reports(self) -> int:
        try:
            result = self.session.execute(delete(Report))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("report_purge_failed")
            raise StoreFailure("failed to purge cached reports") from exc
        purged = result.rowcount or 0
        logger.info(f"reports_purged: count={purged}")
        return purged


class CostService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, data: CostIn) -> Cost:
        if not UserRegistry(self.session).exists(data.userid):
            raise UserNotFound(data.userid)

        window = window_for(data.date)
        try:
            cost = Cost(
                userid=data.userid,
                description=data.description,
                category=data.category,
                sum=data.sum,
                date=data.date,
            )
            self.session.add(cost)
            self.session.flush()
            invalidated = invalidate_report(
                self.session, data.userid, window.year, window.month
            )
            total = LedgerService(self.session).recompute_total(data.userid)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"cost_add_failed: userid={data.userid} period={window.slug}"
            )
            raise StoreFailure("failed to store cost") from exc

        logger.info(
            f"cost_added: userid={data.userid} category={data.category.value} "
            f"period={window.slug} reports_invalidated={invalidated} total={total}"
        )
        return cost


class ReportService:
    def __init__(self, session: Session, timezone: Optional[str] = None) -> None:
        self.session = session
        self.timezone = timezone or get_settings().timezone

    def get(self, user_id: int, year: int, month: int) -> ReportLookup:
        check_report_period(
            user_id, year, month, current_year=local_now(self.timezone).year
        )
        if not UserRegistry(self.session).exists(user_id):
            raise UserNotFound(user_id)

        try:
            cached = self.session.scalar(
                select(Report).where(
                    Report.userid == user_id,
                    Report.year == year,
                    Report.month == month,
                )
            )
            if cached:
                try:
                    summary = MonthlySummary.from_report(cached)
                except ValueError as exc:
                    # unreadable rows are dropped and rebuilt like a miss
                    logger.warning(
                        f"report_cache_corrupt: userid={user_id} year={year} "
                        f"month={month} error={exc}"
                    )
                    self.session.delete(cached)
                    self.session.flush()
                else:
                    logger.debug(
                        f"report_cache_hit: userid={user_id} year={year} "
                        f"month={month}"
                    )
                    return ReportLookup(summary, True)

            summary = aggregate_month(self.session, user_id, year, month)
            self._persist(summary)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"report_failed: userid={user_id} year={year} month={month}"
            )
            raise StoreFailure("failed to build report") from exc

        logger.info(f"report_cache_miss: userid={user_id} year={year} month={month}")
        return ReportLookup(summary, False)

    def _persist(self, summary: MonthlySummary) -> None:
        self.session.add(
            Report(
                userid=summary.userid,
                year=summary.year,
                month=summary.month,
                costs=summary.costs_payload(),
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # another request stored the same period first
            self.session.rollback()
            logger.info(
                f"report_already_stored: userid={summary.userid} "
                f"year={summary.year} month={summary.month}"
            )
