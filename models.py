from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config import get_settings
from database import Base
from periods import today_in


MAX_AMOUNT = Decimal("999999.99")
DEFAULT_NOTIFICATION_THRESHOLD = 0.8


class ExpenseCategory(str, Enum):
    food_dining = "Food & Dining"
    transportation = "Transportation"
    shopping = "Shopping"
    entertainment = "Entertainment"
    healthcare = "Healthcare"
    education = "Education"
    bills_utilities = "Bills & Utilities"
    travel = "Travel"
    personal_care = "Personal Care"
    subscriptions = "Subscriptions"
    gifts_donations = "Gifts & Donations"
    other = "Other"


class PaymentMethod(str, Enum):
    cash = "Cash"
    credit_card = "Credit Card"
    debit_card = "Debit Card"
    bank_transfer = "Bank Transfer"
    digital_wallet = "Digital Wallet"
    check = "Check"
    other = "Other"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


CATEGORY_ENUM = SAEnum(
    ExpenseCategory, name="expensecategory", values_callable=_enum_values
)
PAYMENT_METHOD_ENUM = SAEnum(
    PaymentMethod, name="paymentmethod", values_callable=_enum_values
)


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)


def month_year_of(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="user"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="user")

    __table_args__ = (
        UniqueConstraint("username", name="uq_user_username"),
        UniqueConstraint("email", name="uq_user_email"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(CATEGORY_ENUM, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        PAYMENT_METHOD_ENUM, nullable=False
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="expenses")
    tag_rows: Mapped[list["ExpenseTag"]] = relationship(
        "ExpenseTag",
        back_populates="expense",
        order_by="ExpenseTag.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        CheckConstraint(
            "amount_cents > 0 AND amount_cents <= 99999999",
            name="ck_expenses_amount_range",
        ),
    )

    @property
    def amount(self) -> float:
        return from_cents(self.amount_cents)

    @property
    def tags(self) -> list[str]:
        return [row.name for row in self.tag_rows]

    @tags.setter
    def tags(self, names: list[str]) -> None:
        self.tag_rows = [
            ExpenseTag(name=name, position=idx) for idx, name in enumerate(names)
        ]

    @property
    def formatted_date(self) -> str:
        return self.date.isoformat()

    @property
    def month_year(self) -> str:
        return month_year_of(self.date)


class ExpenseTag(Base):
    __tablename__ = "expense_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="tag_rows")

    __table_args__ = (Index("ix_expense_tags_expense", "expense_id", "position"),)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(CATEGORY_ENUM, nullable=False)
    amount_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notification_threshold: Mapped[float] = mapped_column(
        Float, default=DEFAULT_NOTIFICATION_THRESHOLD, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="budgets")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category", "month_year", name="uq_budget_user_category_month"
        ),
        Index("ix_budgets_user_month", "user_id", "month_year"),
        CheckConstraint(
            "amount_limit_cents > 0", name="ck_budgets_amount_limit_positive"
        ),
        CheckConstraint(
            "notification_threshold >= 0.1 AND notification_threshold <= 1.0",
            name="ck_budgets_threshold_range",
        ),
    )

    @property
    def amount_limit(self) -> float:
        return from_cents(self.amount_limit_cents)

    def is_current_month(self, today: Optional[date] = None) -> bool:
        return self.month_year == month_year_of(
            today or today_in(get_settings().timezone)
        )
