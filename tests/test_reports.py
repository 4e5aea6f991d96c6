from datetime import datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

import services
from database import Base, Database
from errors import InvalidParameters, UserNotFound
from models import REPORT_CATEGORY_ORDER, Cost, CostCategory, Report
from schemas import CostIn, UserIn
from services import (
    CostService,
    ReportService,
    UserRegistry,
    aggregate_month,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session) -> None:
    UserRegistry(session).create(
        UserIn(id=12341234, first_name="mosh", last_name="israeli")
    )
    costs = CostService(session)
    costs.add(
        CostIn(
            userid=12341234,
            description="math book",
            category=CostCategory.education,
            sum=82,
            date=datetime(2025, 3, 10),
        )
    )
    costs.add(
        CostIn(
            userid=12341234,
            description="pizza",
            category=CostCategory.food,
            sum=30,
            date=datetime(2025, 3, 10, 19, 30),
        )
    )


def test_report_groups_costs_in_canonical_order() -> None:
    session = make_session()
    seed(session)

    lookup = ReportService(session, timezone="UTC").get(12341234, 2025, 3)

    assert lookup.from_cache is False
    assert lookup.summary.to_payload() == {
        "userid": 12341234,
        "year": 2025,
        "month": 3,
        "costs": [
            {"food": [{"sum": 30.0, "description": "pizza", "day": 10}]},
            {"education": [{"sum": 82.0, "description": "math book", "day": 10}]},
            {"health": []},
            {"housing": []},
            {"sport": []},
        ],
    }


def test_empty_month_still_has_five_categories() -> None:
    session = make_session()
    seed(session)

    summary = ReportService(session, timezone="UTC").get(12341234, 2025, 1).summary

    assert [category for category, _ in summary.costs] == list(REPORT_CATEGORY_ORDER)
    assert all(items == () for _, items in summary.costs)


def test_items_keep_insertion_order_within_category() -> None:
    session = make_session()
    seed(session)
    for description in ("bread", "milk", "eggs"):
        CostService(session).add(
            CostIn(
                userid=12341234,
                description=description,
                category=CostCategory.food,
                sum=1,
                date=datetime(2025, 3, 1),
            )
        )

    summary = aggregate_month(session, 12341234, 2025, 3)
    food = dict(summary.costs)[CostCategory.food]

    assert [item.description for item in food] == ["pizza", "bread", "milk", "eggs"]


def test_month_window_is_half_open() -> None:
    session = make_session()
    UserRegistry(session).create(UserIn(id=1, first_name="a", last_name="b"))
    costs = CostService(session)
    for description, moment in [
        ("last of february", datetime(2025, 2, 28, 23, 59, 59)),
        ("start of march", datetime(2025, 3, 1, 0, 0, 0)),
        ("end of march", datetime(2025, 3, 31, 23, 59, 59)),
        ("start of april", datetime(2025, 4, 1, 0, 0, 0)),
    ]:
        costs.add(
            CostIn(
                userid=1,
                description=description,
                category=CostCategory.sport,
                sum=5,
                date=moment,
            )
        )

    summary = aggregate_month(session, 1, 2025, 3)
    sport = dict(summary.costs)[CostCategory.sport]

    assert [item.description for item in sport] == ["start of march", "end of march"]
    assert [item.day for item in sport] == [1, 31]


def test_december_window_rolls_into_next_year() -> None:
    session = make_session()
    UserRegistry(session).create(UserIn(id=1, first_name="a", last_name="b"))
    costs = CostService(session)
    for moment in (datetime(2024, 12, 31, 22, 0), datetime(2025, 1, 1, 0, 0)):
        costs.add(
            CostIn(
                userid=1,
                description=moment.isoformat(),
                category=CostCategory.housing,
                sum=100,
                date=moment,
            )
        )

    housing = dict(aggregate_month(session, 1, 2024, 12).costs)[CostCategory.housing]

    assert len(housing) == 1
    assert housing[0].day == 31


def test_aggregation_only_reads_the_requested_user() -> None:
    session = make_session()
    seed(session)
    UserRegistry(session).create(UserIn(id=7, first_name="a", last_name="b"))
    CostService(session).add(
        CostIn(
            userid=7,
            description="gym",
            category=CostCategory.sport,
            sum=50,
            date=datetime(2025, 3, 5),
        )
    )

    summary = aggregate_month(session, 12341234, 2025, 3)

    assert dict(summary.costs)[CostCategory.sport] == ()
    assert session.scalar(select(func.count(Report.id))) == 0


def test_second_fetch_is_served_from_cache() -> None:
    session = make_session()
    seed(session)
    reports = ReportService(session, timezone="UTC")

    first = reports.get(12341234, 2025, 3)
    second = reports.get(12341234, 2025, 3)

    assert first.from_cache is False
    assert second.from_cache is True
    assert first.summary.to_payload() == second.summary.to_payload()
    assert session.scalar(select(func.count(Report.id))) == 1


def test_cached_report_is_returned_unchanged() -> None:
    session = make_session()
    seed(session)
    session.add(
        Report(
            userid=12341234,
            year=2025,
            month=3,
            costs=[{"food": [{"sum": 30, "description": "pizza", "day": 10}]}],
        )
    )
    session.commit()

    lookup = ReportService(session, timezone="UTC").get(12341234, 2025, 3)

    assert lookup.from_cache is True
    assert lookup.summary.costs_payload() == [
        {"food": [{"sum": 30.0, "description": "pizza", "day": 10}]}
    ]


def test_write_in_period_forces_recompute() -> None:
    session = make_session()
    seed(session)
    reports = ReportService(session, timezone="UTC")
    reports.get(12341234, 2025, 3)

    CostService(session).add(
        CostIn(
            userid=12341234,
            description="running shoes",
            category=CostCategory.sport,
            sum=120,
            date=datetime(2025, 3, 20),
        )
    )
    lookup = reports.get(12341234, 2025, 3)

    assert lookup.from_cache is False
    sport = dict(lookup.summary.costs)[CostCategory.sport]
    assert [item.description for item in sport] == ["running shoes"]


def test_write_in_other_period_keeps_cache() -> None:
    session = make_session()
    seed(session)
    reports = ReportService(session, timezone="UTC")
    reports.get(12341234, 2025, 3)

    CostService(session).add(
        CostIn(
            userid=12341234,
            description="rent",
            category=CostCategory.housing,
            sum=900,
            date=datetime(2025, 4, 1),
        )
    )

    assert reports.get(12341234, 2025, 3).from_cache is True


def test_unknown_user_is_rejected() -> None:
    session = make_session()
    seed(session)

    with pytest.raises(UserNotFound):
        ReportService(session, timezone="UTC").get(999999, 2025, 3)


@pytest.mark.parametrize(
    "userid, year, month",
    [(-1, 2025, 3), (12341234, -2, 3), (12341234, 2025, 0), (12341234, 2025, 13)],
)
def test_invalid_parameters_are_rejected(userid: int, year: int, month: int) -> None:
    session = make_session()
    seed(session)

    with pytest.raises(InvalidParameters) as excinfo:
        ReportService(session, timezone="UTC").get(userid, year, month)
    assert str(excinfo.value) == "invalid parameters"


def test_future_year_is_rejected() -> None:
    session = make_session()
    seed(session)

    with pytest.raises(InvalidParameters):
        ReportService(session, timezone="UTC").get(
            12341234, datetime.now().year + 2, 1
        )


def test_year_zero_yields_empty_report() -> None:
    session = make_session()
    seed(session)

    summary = ReportService(session, timezone="UTC").get(12341234, 0, 1).summary

    assert all(items == () for _, items in summary.costs)


@pytest.mark.parametrize(
    "stored",
    [
        [{"food": [{"sum": "lots", "description": "pizza", "day": 10}]}],
        [{"food": [{"sum": 30, "description": "pizza", "day": 42}]}],
        [{"food": "pizza"}],
        ["food"],
        {"food": []},
    ],
)
def test_unreadable_cached_report_is_rebuilt(stored) -> None:
    session = make_session()
    seed(session)
    session.add(Report(userid=12341234, year=2025, month=3, costs=stored))
    session.commit()
    reports = ReportService(session, timezone="UTC")

    lookup = reports.get(12341234, 2025, 3)

    assert lookup.from_cache is False
    food = dict(lookup.summary.costs)[CostCategory.food]
    assert [item.description for item in food] == ["pizza"]
    assert session.scalar(select(func.count(Report.id))) == 1
    assert reports.get(12341234, 2025, 3).from_cache is True


def test_unknown_category_in_cached_report_is_dropped() -> None:
    session = make_session()
    seed(session)
    session.add(
        Report(
            userid=12341234,
            year=2025,
            month=3,
            costs=[{"food": []}, {"alcohol": [{"sum": 1, "description": "x", "day": 1}]}],
        )
    )
    session.commit()

    summary = ReportService(session, timezone="UTC").get(12341234, 2025, 3).summary

    assert summary.costs_payload() == [{"food": []}]


def test_concurrent_insert_of_same_report_is_tolerated(tmp_path, monkeypatch) -> None:
    database = Database(f"sqlite:///{tmp_path / 'costs.db'}")
    database.open()
    database.create_all()
    real_aggregate = services.aggregate_month

    def racing_aggregate(session, user_id, year, month):
        summary = real_aggregate(session, user_id, year, month)
        with database.session_scope() as other:
            other.add(
                Report(userid=user_id, year=year, month=month, costs=[{"food": []}])
            )
        return summary

    try:
        with database.session_scope() as session:
            seed(session)
        monkeypatch.setattr(services, "aggregate_month", racing_aggregate)

        session = database.session()
        try:
            reports = ReportService(session, timezone="UTC")
            first = reports.get(12341234, 2025, 3)
            second = reports.get(12341234, 2025, 3)
        finally:
            session.close()

        assert first.from_cache is False
        assert len(first.summary.costs) == 5
        assert second.from_cache is True
        assert second.summary.costs_payload() == [{"food": []}]
    finally:
        database.close()


def test_costs_table_is_untouched_by_reads() -> None:
    session = make_session()
    seed(session)

    ReportService(session, timezone="UTC").get(12341234, 2025, 3)

    assert session.scalar(select(func.count(Cost.id))) == 2
