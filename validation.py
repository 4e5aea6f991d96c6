"""Parsing of raw request input into validated values.

Checks run in a fixed order and the first failing check decides the error, so
callers always see the same reason for the same bad payload. Nothing here
touches the database; the user-existence check belongs to the services.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone as dt_timezone
from typing import Mapping, Optional

from errors import InvalidParameters, ValidationReason
from models import CostCategory
from periods import local_now, to_local_naive, window_for
from schemas import CostIn

REQUIRED_COST_FIELDS = ("userid", "description", "category", "sum")
REPORT_QUERY_PARAMS = ("userid", "year", "month")

# ids are stored in signed 64-bit INTEGER columns
MAX_USER_ID = 2**63 - 1


def is_valid_user_id(value: Optional[int]) -> bool:
    return value is not None and 0 <= value <= MAX_USER_ID


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def coerce_int(value: object) -> Optional[int]:
    """Integer value of ``value``, or None when it is not a whole number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        if math.isfinite(number) and number.is_integer():
            return int(number)
    return None


def parse_timestamp(value: object, timezone: str) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch milliseconds into a naive local datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            moment = datetime.fromtimestamp(value / 1000, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return to_local_naive(moment, timezone)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
        return to_local_naive(moment, timezone)
    return None


def parse_cost_payload(
    payload: Mapping[str, object],
    *,
    timezone: str,
    now: Optional[datetime] = None,
) -> CostIn:
    if any(_is_missing(payload.get(field)) for field in REQUIRED_COST_FIELDS):
        raise InvalidParameters(ValidationReason.missing_fields)

    description = payload["description"]
    if isinstance(description, (int, float)) and not isinstance(description, bool):
        description = str(description)
    if not isinstance(description, str):
        raise InvalidParameters(ValidationReason.missing_fields)

    userid = coerce_int(payload["userid"])
    if not is_valid_user_id(userid):
        raise InvalidParameters(ValidationReason.invalid_userid)

    amount = payload["sum"]
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidParameters(ValidationReason.invalid_sum)
    try:
        amount = float(amount)
    except OverflowError as exc:
        raise InvalidParameters(ValidationReason.invalid_sum) from exc
    if not math.isfinite(amount):
        raise InvalidParameters(ValidationReason.invalid_sum)

    raw_date = payload.get("date")
    if raw_date is None:
        occurred_at = now or local_now(timezone)
    else:
        occurred_at = parse_timestamp(raw_date, timezone)
        if occurred_at is None:
            raise InvalidParameters(ValidationReason.invalid_date)
    try:
        window_for(occurred_at)
    except (OverflowError, ValueError) as exc:
        # the month after December 9999 cannot be represented
        raise InvalidParameters(ValidationReason.invalid_date) from exc

    category_raw = payload["category"]
    if not isinstance(category_raw, str):
        raise InvalidParameters(ValidationReason.invalid_category)
    try:
        category = CostCategory(category_raw)
    except ValueError as exc:
        raise InvalidParameters(ValidationReason.invalid_category) from exc

    return CostIn(
        userid=userid,
        description=description,
        category=category,
        sum=amount,
        date=occurred_at,
    )


def parse_report_query(params: Mapping[str, object]) -> tuple[int, int, int]:
    if any(_is_missing(params.get(name)) for name in REPORT_QUERY_PARAMS):
        raise InvalidParameters(ValidationReason.report_params_required)
    values = [coerce_int(params[name]) for name in REPORT_QUERY_PARAMS]
    if any(value is None for value in values):
        raise InvalidParameters(ValidationReason.invalid_parameters)
    userid, year, month = values
    return userid, year, month


def check_report_period(
    userid: int, year: int, month: int, *, current_year: int
) -> None:
    if (
        not is_valid_user_id(userid)
        or year < 0
        or year > current_year
        or not 1 <= month <= 12
    ):
        raise InvalidParameters(ValidationReason.invalid_parameters)
