"""Request bodies accepted by the JSON surface."""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ReviewIn(BaseModel):
    action: str
    reject_reason: Optional[str] = None


class RedemptionIn(BaseModel):
    points: int
    remark: str = ""


class DirectRedemptionIn(BaseModel):
    member_id: str
    points: int
    remark: str = ""


class ChoreTypeIn(BaseModel):
    name: str
    points: int
    description: str = ""


class ChoreTypeUpdate(BaseModel):
    name: Optional[str] = None
    points: Optional[int] = None
    description: Optional[str] = None
    active: Optional[bool] = None


class ChoreRecordIn(BaseModel):
    chore_type_id: str
    note: str = ""
    images: List[str] = Field(default_factory=list)


class ChoreReviewIn(BaseModel):
    action: str
    deduction: int = 0
    deduction_reason: Optional[str] = None
    review_note: Optional[str] = None


class AmountIn(BaseModel):
    amount: Decimal
    description: str = ""


class SavingsRequestIn(BaseModel):
    type: str
    amount: Decimal
    description: str = ""


class RateIn(BaseModel):
    annual_rate: Decimal


class RoleIn(BaseModel):
    role: str


class PointsValueIn(BaseModel):
    points_value: Decimal


__all__ = [
    "AmountIn",
    "ChoreRecordIn",
    "ChoreReviewIn",
    "ChoreTypeIn",
    "ChoreTypeUpdate",
    "DirectRedemptionIn",
    "PointsValueIn",
    "RateIn",
    "RedemptionIn",
    "ReviewIn",
    "RoleIn",
    "SavingsRequestIn",
]
