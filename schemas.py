from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models import ICON_BACKGROUNDS, ExpenseIcon


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


class ExpenseIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    icon: ExpenseIcon = ExpenseIcon.restaurant
    icon_bg_color: Optional[str] = Field(default=None, max_length=9)
    active: bool = True
    is_payment_plan: bool = False
    total_payments: Optional[int] = Field(default=None, gt=0)
    current_payment: Optional[int] = Field(default=None, ge=0)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value: object) -> object:
        return _strip(value)

    @model_validator(mode="after")
    def normalize_plan_fields(self) -> "ExpenseIn":
        if self.icon_bg_color is None:
            self.icon_bg_color = ICON_BACKGROUNDS[self.icon]
        if not self.is_payment_plan:
            self.total_payments = None
            self.current_payment = None
            return self
        if self.total_payments is None:
            raise ValueError("Payment plans need a number of payments")
        if self.current_payment is None:
            self.current_payment = 0
        if self.current_payment > self.total_payments:
            raise ValueError("Current payment cannot exceed the number of payments")
        return self

    def as_fields(self) -> dict[str, object]:
        fields = self.model_dump()
        fields["icon"] = self.icon.value
        return fields


class IncomeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    day: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: object) -> object:
        return _strip(value)

    @model_validator(mode="after")
    def check_day(self) -> "IncomeIn":
        if self.day is not None:
            try:
                date(self.year, self.month, self.day)
            except ValueError as exc:
                raise ValueError("Day is not valid for the given month") from exc
        return self


class PaidToggleIn(BaseModel):
    paid: bool
