from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import CostCategory


class CostIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    userid: int = Field(..., ge=0)
    description: str = Field(..., min_length=1)
    category: CostCategory
    sum: float = Field(..., allow_inf_nan=False)
    date: datetime


class CostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    userid: int
    description: str
    category: CostCategory
    sum: float
    date: datetime


class ReportItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    sum: float
    description: str
    day: int = Field(..., ge=1, le=31)


class ReportOut(BaseModel):
    userid: int
    year: int
    month: int
    costs: list[dict[str, list[ReportItem]]]


class UserIn(BaseModel):
    id: int = Field(..., ge=0)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthday: Optional[date] = None
    marital_status: Optional[str] = Field(default=None, max_length=40)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    total: float


class DeveloperOut(BaseModel):
    first_name: str
    last_name: str


class ReconcileOut(BaseModel):
    users: int
    reports_purged: int
