from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AdjustmentCreateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expense_id: int
    user_id: str = Field(..., min_length=1, max_length=100)
    adjustment_type: Optional[str] = None
    adjustment_amount: Optional[Decimal] = None
    adjustment_reason: Optional[str] = Field(default=None, max_length=100)
    adjustment_date: Optional[dt.date] = None
    status: Optional[str] = None


class AdjustmentUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adjustment_id: Optional[int] = None
    user_id: str = Field(..., min_length=1, max_length=100)
    adjustment_type: Optional[str] = None
    adjustment_amount: Optional[Decimal] = None
    adjustment_reason: Optional[str] = Field(default=None, max_length=100)
    adjustment_date: Optional[dt.date] = None
    status: Optional[str] = None


class AdjustmentOut(BaseModel):
    id: int
    expense_id: int
    user_id: str
    adjustment_type: str
    adjustment_amount: Decimal
    adjustment_reason: Optional[str]
    adjustment_date: date
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    expense_name: Optional[str] = None
    original_expense_amount: Optional[Decimal] = None


class AdjustmentPageOut(BaseModel):
    content: list[AdjustmentOut]
    page: int
    size: int
    total_elements: int
    total_pages: int


class DateRangeIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date


class MonthlyBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    year: int
    month: int
    opening_balance: Decimal
    closing_balance: Decimal
    created_at: datetime


class MonthlyBalancePageOut(BaseModel):
    content: list[MonthlyBalanceOut]
    page: int
    size: int
    total_elements: int
    total_pages: int


class BatchSummaryOut(BaseModel):
    message: str
    year: int
    month: int
    generated: int
    existing: int
    failed_user_ids: list[str]
