import datetime as dt
import re
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
)

from models import MAX_AMOUNT, ExpenseCategory, PaymentMethod

MIN_AMOUNT = Decimal("0.01")
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
MONTH_YEAR_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _coerce_date(value):
    # Accept full ISO timestamps as well as plain dates.
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10:
        try:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return value
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _reject_null(value):
    if value is None:
        raise ValueError("Field cannot be null")
    return value


def _check_password(value: str) -> str:
    if not PASSWORD_RE.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number"
        )
    return value


Email = Annotated[EmailStr, BeforeValidator(_strip), AfterValidator(str.lower)]
Password = Annotated[str, Field(min_length=6), AfterValidator(_check_password)]
Username = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True, min_length=3, max_length=30, pattern=USERNAME_PATTERN
    ),
]
Tag = Annotated[str, StringConstraints(strip_whitespace=True, max_length=50)]
Description = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)
]
Amount = Annotated[Decimal, Field(ge=MIN_AMOUNT, le=MAX_AMOUNT)]
LooseDate = Annotated[Optional[dt.date], BeforeValidator(_coerce_date)]


class SignupIn(BaseModel):
    username: Username
    email: Email
    password: Password


class LoginIn(BaseModel):
    email: Email
    password: str = Field(..., min_length=1)


class RefreshIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken", min_length=1)


class ProfileUpdateIn(BaseModel):
    username: Optional[Username] = None
    email: Optional[Email] = None


class PasswordChangeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: Password = Field(..., alias="newPassword")


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Amount
    category: ExpenseCategory
    date: LooseDate = None
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    description: Description
    tags: list[Tag] = Field(default_factory=list)


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    amount: Optional[Amount] = None
    category: Optional[ExpenseCategory] = None
    date: LooseDate = None
    payment_method: Optional[PaymentMethod] = Field(
        default=None, alias="paymentMethod"
    )
    description: Optional[Description] = None
    tags: Optional[list[Tag]] = None

    @field_validator(
        "amount", "category", "date", "payment_method", "description", "tags",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class NotificationsIn(BaseModel):
    enabled: bool = True
    threshold: float = Field(default=0.8, ge=0.1, le=1.0)


class BudgetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: ExpenseCategory
    amount_limit: Amount = Field(..., alias="amountLimit")
    month_year: Optional[str] = Field(
        default=None, alias="monthYear", pattern=MONTH_YEAR_PATTERN
    )
    notifications: Optional[NotificationsIn] = None


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    category: Optional[ExpenseCategory] = None
    amount_limit: Optional[Amount] = Field(default=None, alias="amountLimit")
    month_year: Optional[str] = Field(
        default=None, alias="monthYear", pattern=MONTH_YEAR_PATTERN
    )
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    notifications: Optional[NotificationsIn] = None

    @field_validator(
        "category", "amount_limit", "month_year", "is_active", "notifications",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class CopyPreviousIn(BaseModel):
    category: ExpenseCategory


class ExpenseFilters(BaseModel):
    category: Optional[ExpenseCategory] = None
    start_date: LooseDate = None
    end_date: LooseDate = None
