from __future__ import annotations

import calendar
import logging
import math
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import bcrypt
from sqlalchemy import extract, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from config import Settings, get_settings
from csv_utils import export_filename, write_budgets_csv, write_expenses_csv
from errors import (
    DuplicateBudget,
    DuplicateIdentity,
    InvalidCredentials,
    NotFound,
    ValidationFailed,
)
from models import (
    DEFAULT_NOTIFICATION_THRESHOLD,
    Budget,
    Expense,
    ExpenseCategory,
    ExpenseTag,
    PaymentMethod,
    User,
    from_cents,
    month_year_of,
    to_cents,
)
from periods import (
    Period,
    add_months,
    format_month_year,
    iso_week_period,
    month_end,
    month_period,
    month_start,
    parse_month_year,
    resolve_period,
    resolve_range,
    today_in,
)
from schemas import (
    BudgetIn,
    BudgetUpdate,
    ExpenseFilters,
    ExpenseIn,
    ExpenseUpdate,
    PasswordChangeIn,
    ProfileUpdateIn,
    SignupIn,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
RECOMMENDATION_BUFFER = 1.2
HIGH_CONFIDENCE_MIN_COUNT = 5
MIN_YEAR = 1970
MAX_YEAR = 3000

EXPENSE_SORT_COLUMNS = {
    "date": Expense.date,
    "amount": Expense.amount_cents,
    "category": Expense.category,
    "paymentMethod": Expense.payment_method,
    "description": Expense.description,
    "createdAt": Expense.created_at,
}


def _round2(value: float) -> float:
    return round(value, 2)


def _current_today(today: Optional[date]) -> date:
    return today or today_in(get_settings().timezone)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    rounds = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def user_to_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "createdAt": _timestamp(user.created_at),
    }


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "userId": expense.user_id,
        "amount": expense.amount,
        "category": expense.category.value,
        "date": expense.date.isoformat(),
        "formattedDate": expense.formatted_date,
        "monthYear": expense.month_year,
        "paymentMethod": expense.payment_method.value,
        "description": expense.description,
        "tags": expense.tags,
        "createdAt": _timestamp(expense.created_at),
        "updatedAt": _timestamp(expense.updated_at),
    }


def budget_to_dict(budget: Budget, today: Optional[date] = None) -> dict[str, object]:
    return {
        "id": budget.id,
        "userId": budget.user_id,
        "category": budget.category.value,
        "amountLimit": budget.amount_limit,
        "monthYear": budget.month_year,
        "isActive": budget.is_active,
        "notifications": {
            "enabled": budget.notifications_enabled,
            "threshold": budget.notification_threshold,
        },
        "isCurrentMonth": budget.is_current_month(today),
        "createdAt": _timestamp(budget.created_at),
        "updatedAt": _timestamp(budget.updated_at),
    }


@dataclass
class Page:
    items: list[Expense]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    def pagination(self) -> dict[str, int]:
        return {
            "currentPage": self.page,
            "totalPages": self.total_pages,
            "totalItems": self.total,
            "itemsPerPage": self.limit,
        }


def _check_year(year: int) -> None:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationFailed(
            "Validation failed",
            [
                {
                    "field": "year",
                    "message": f"Year must be between {MIN_YEAR} and {MAX_YEAR}",
                }
            ],
        )


def _check_paging(page: int, limit: int) -> None:
    errors = []
    if page < 1:
        errors.append({"field": "page", "message": "Page must be at least 1"})
    if limit < 1:
        errors.append({"field": "limit", "message": "Limit must be at least 1"})
    if errors:
        raise ValidationFailed("Validation failed", errors)


class UserService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def _find_taken(
        self,
        username: Optional[str],
        email: Optional[str],
        exclude_id: Optional[int] = None,
    ) -> Optional[str]:
        if username:
            stmt = select(User.id).where(User.username == username)
            if exclude_id is not None:
                stmt = stmt.where(User.id != exclude_id)
            if self.session.scalar(stmt):
                return "Username already exists"
        if email:
            stmt = select(User.id).where(User.email == email)
            if exclude_id is not None:
                stmt = stmt.where(User.id != exclude_id)
            if self.session.scalar(stmt):
                return "Email already exists"
        return None

    def register(self, data: SignupIn) -> User:
        taken = self._find_taken(data.username, data.email)
        if taken:
            raise DuplicateIdentity(taken)

        user = User(
            username=data.username,
            email=data.email,
            password_hash=hash_password(data.password, self.settings.bcrypt_rounds),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateIdentity("Username or email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )
        if not user or not verify_password(password, user.password_hash):
            logger.info("login_failed")
            raise InvalidCredentials()
        return user

    def update_profile(self, user: User, data: ProfileUpdateIn) -> User:
        taken = self._find_taken(data.username, data.email, exclude_id=user.id)
        if taken:
            raise DuplicateIdentity(taken)
        if data.username:
            user.username = data.username
        if data.email:
            user.email = data.email
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateIdentity("Username or email already exists") from exc
        self.session.refresh(user)
        return user

    def change_password(self, user: User, data: PasswordChangeIn) -> None:
        if not verify_password(data.current_password, user.password_hash):
            raise ValidationFailed(
                "Current password is incorrect",
                [
                    {
                        "field": "currentPassword",
                        "message": "Current password is incorrect",
                    }
                ],
            )
        user.password_hash = hash_password(
            data.new_password, self.settings.bcrypt_rounds
        )
        self.session.commit()
        logger.info(f"password_changed: user_id={user.id}")


class ExpenseService:
    def __init__(
        self, session: Session, user_id: int, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = _current_today(today)

    def _conditions(
        self,
        category: Optional[ExpenseCategory] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list:
        conds = [Expense.user_id == self.user_id]
        if category:
            conds.append(Expense.category == category)
        if start:
            conds.append(Expense.date >= start)
        if end:
            conds.append(Expense.date <= end)
        return conds

    def _page(self, conds: list, order_by: list, page: int, limit: int) -> Page:
        total = self.session.execute(
            select(func.count(Expense.id)).where(*conds)
        ).scalar_one()
        stmt = (
            select(Expense)
            .options(selectinload(Expense.tag_rows))
            .where(*conds)
            .order_by(*order_by)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, page=page, limit=limit, total=int(total or 0))

    def list(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        category: Optional[ExpenseCategory] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> Page:
        _check_paging(page, limit)
        column = EXPENSE_SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationFailed(
                "Validation failed",
                [{"field": "sortBy", "message": f"Cannot sort by {sort_by}"}],
            )
        if sort_order == "desc":
            order_by = [column.desc(), Expense.id.desc()]
        else:
            order_by = [column.asc(), Expense.id.asc()]
        conds = self._conditions(category, start_date, end_date)
        return self._page(conds, order_by, page, limit)

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(selectinload(Expense.tag_rows))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> tuple[Expense, list[dict[str, object]]]:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            category=data.category,
            date=data.date or self.today,
            payment_method=data.payment_method,
            description=data.description,
        )
        expense.tags = data.tags
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)

        alerts = BudgetService(self.session, self.user_id, self.today).alerts_for_category(
            data.category
        )
        return expense, alerts

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("amount") is not None:
            expense.amount_cents = to_cents(changes["amount"])
        if changes.get("category") is not None:
            expense.category = changes["category"]
        if changes.get("date") is not None:
            expense.date = changes["date"]
        if changes.get("payment_method") is not None:
            expense.payment_method = changes["payment_method"]
        if changes.get("description") is not None:
            expense.description = changes["description"]
        if changes.get("tags") is not None:
            expense.tags = changes["tags"]
        expense.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()

    def _breakdown(
        self, group_column, label: str, period: Period
    ) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents)
        stmt = (
            select(
                group_column.label("key"),
                total.label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(*self._conditions(start=period.start, end=period.end))
            .group_by(group_column)
            .order_by(total.desc())
        )
        return [
            {
                label: row.key.value,
                "total": from_cents(int(row.total or 0)),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def stats(self, period: str = "month") -> dict[str, object]:
        window = resolve_period(period, today=self.today)
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
                func.avg(Expense.amount_cents).label("average"),
            ).where(*self._conditions(start=window.start, end=window.end))
        ).one()
        return {
            "period": period,
            "dateRange": {
                "startDate": window.start.isoformat(),
                "endDate": window.end.isoformat(),
            },
            "totalSpending": {
                "total": from_cents(int(row.total or 0)),
                "count": int(row.count or 0),
                "average": _round2((row.average or 0) / 100),
            },
            "spendingByCategory": self._breakdown(Expense.category, "category", window),
            "spendingByPaymentMethod": self._breakdown(
                Expense.payment_method, "paymentMethod", window
            ),
        }

    def search(
        self, query: Optional[str], page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> Page:
        if not query or len(query.strip()) < 2:
            raise ValidationFailed(
                "Search query must be at least 2 characters long",
                [
                    {
                        "field": "q",
                        "message": "Search query must be at least 2 characters long",
                    }
                ],
            )
        _check_paging(page, limit)
        needle = query.strip().lower()
        category_hits = [c for c in ExpenseCategory if needle in c.value.lower()]
        method_hits = [m for m in PaymentMethod if needle in m.value.lower()]
        matches = [
            Expense.description.icontains(needle, autoescape=True),
            Expense.tag_rows.any(ExpenseTag.name.icontains(needle, autoescape=True)),
        ]
        if category_hits:
            matches.append(Expense.category.in_(category_hits))
        if method_hits:
            matches.append(Expense.payment_method.in_(method_hits))
        conds = [Expense.user_id == self.user_id, or_(*matches)]
        return self._page(conds, [Expense.date.desc(), Expense.id.desc()], page, limit)

    def filtered(self, filters: ExpenseFilters) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(selectinload(Expense.tag_rows))
            .where(
                *self._conditions(filters.category, filters.start_date, filters.end_date)
            )
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        return list(self.session.scalars(stmt).all())


class BudgetService:
    def __init__(
        self, session: Session, user_id: int, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = _current_today(today)

    @property
    def current_month_year(self) -> str:
        return month_year_of(self.today)

    def _find(
        self, category: ExpenseCategory, month_year: str
    ) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == category,
                Budget.month_year == month_year,
            )
        )

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        if not budget:
            raise NotFound("Budget not found")
        return budget

    def list(self, month_year: Optional[str] = None) -> list[Budget]:
        target = month_year or self.current_month_year
        parse_month_year(target)
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.month_year == target,
                Budget.is_active.is_(True),
            )
            .order_by(Budget.category.asc())
        )
        return list(self.session.scalars(stmt).all())

    def all(self, month_year: Optional[str] = None) -> list[Budget]:
        stmt = select(Budget).where(Budget.user_id == self.user_id)
        if month_year:
            stmt = stmt.where(Budget.month_year == month_year)
        stmt = stmt.order_by(Budget.month_year.desc(), Budget.category.asc())
        return list(self.session.scalars(stmt).all())

    def create(self, data: BudgetIn) -> Budget:
        month_year = data.month_year or self.current_month_year
        if self._find(data.category, month_year):
            raise DuplicateBudget(
                f"Budget for {data.category.value} already exists for {month_year}"
            )
        notifications = data.notifications
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            amount_limit_cents=to_cents(data.amount_limit),
            month_year=month_year,
            is_active=True,
            notifications_enabled=notifications.enabled if notifications else True,
            notification_threshold=(
                notifications.threshold
                if notifications
                else DEFAULT_NOTIFICATION_THRESHOLD
            ),
        )
        return self._save(budget)

    def _save(self, budget: Budget) -> Budget:
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateBudget(
                f"Budget for {budget.category.value} already exists for {budget.month_year}"
            ) from exc
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        category = changes.get("category") or budget.category
        month_year = changes.get("month_year") or budget.month_year
        if (category, month_year) != (budget.category, budget.month_year):
            clash = self._find(category, month_year)
            if clash and clash.id != budget.id:
                raise DuplicateBudget(
                    f"Budget for {category.value} already exists for {month_year}"
                )
        budget.category = category
        budget.month_year = month_year
        if changes.get("amount_limit") is not None:
            budget.amount_limit_cents = to_cents(changes["amount_limit"])
        if changes.get("is_active") is not None:
            budget.is_active = changes["is_active"]
        if data.notifications is not None:
            budget.notifications_enabled = data.notifications.enabled
            budget.notification_threshold = data.notifications.threshold
        budget.updated_at = datetime.utcnow()
        return self._save(budget)

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_for(self, category: ExpenseCategory, month_year: str) -> int:
        year, month = parse_month_year(month_year)
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
                    Expense.user_id == self.user_id,
                    Expense.category == category,
                    Expense.date.between(month_start(year, month), month_end(year, month)),
                )
            ).scalar_one()
            or 0
        )

    def evaluate(self, budget: Budget, spent_cents: int) -> dict[str, object]:
        limit = budget.amount_limit_cents
        percentage = spent_cents * 100 / limit
        return {
            **budget_to_dict(budget, self.today),
            "totalSpent": from_cents(spent_cents),
            "remaining": from_cents(limit - spent_cents),
            "percentageUsed": _round2(percentage),
            "isOverBudget": spent_cents > limit,
            "shouldAlert": percentage >= round(budget.notification_threshold * 100, 6),
        }

    def status(self, month_year: Optional[str] = None) -> list[dict[str, object]]:
        target = month_year or self.current_month_year
        return [
            self.evaluate(budget, self.spent_for(budget.category, target))
            for budget in self.list(target)
        ]

    def alerts(self, month_year: Optional[str] = None) -> list[dict[str, object]]:
        return [
            row
            for row in self.status(month_year)
            if row["isOverBudget"] or row["shouldAlert"]
        ]

    def detail(self, budget_id: int) -> dict[str, object]:
        budget = self.get(budget_id)
        spent = self.spent_for(budget.category, budget.month_year)
        row = self.evaluate(budget, spent)
        row["currentSpending"] = row["totalSpent"]
        return row

    def alerts_for_category(self, category: ExpenseCategory) -> list[dict[str, object]]:
        """Budget alerts raised by spending in ``category`` this month."""
        alerts: list[dict[str, object]] = []
        month_year = self.current_month_year
        for budget in self.list(month_year):
            if budget.category != category:
                continue
            spent = self.spent_for(category, month_year)
            limit = budget.amount_limit_cents
            percentage = spent * 100 / limit
            alert: dict[str, object] = {
                "category": budget.category.value,
                "amountLimit": budget.amount_limit,
                "currentSpending": from_cents(spent),
            }
            if spent > limit:
                alert["exceededBy"] = from_cents(spent - limit)
            elif percentage >= round(budget.notification_threshold * 100, 6):
                alert["percentageUsed"] = _round2(percentage)
            else:
                continue
            alerts.append(alert)
        return alerts

    def copy_previous_month(self, category: ExpenseCategory) -> Budget:
        prev_year, prev_month = add_months(self.today.year, self.today.month, -1)
        previous_month_year = format_month_year(prev_year, prev_month)
        previous = self._find(category, previous_month_year)
        if not previous:
            raise NotFound(f"No budget found for {category.value} in {previous_month_year}")

        current = self.current_month_year
        if self._find(category, current):
            raise DuplicateBudget(f"Budget for {category.value} already exists for {current}")

        budget = Budget(
            user_id=self.user_id,
            category=category,
            amount_limit_cents=previous.amount_limit_cents,
            month_year=current,
            is_active=True,
            notifications_enabled=previous.notifications_enabled,
            notification_threshold=previous.notification_threshold,
        )
        return self._save(budget)

    def recommend(self, months: int = 3) -> dict[str, object]:
        if months < 1:
            raise ValidationFailed(
                "Validation failed",
                [{"field": "months", "message": "Months must be at least 1"}],
            )
        start_year, start_month = add_months(self.today.year, self.today.month, -months)
        end_year, end_month = add_months(self.today.year, self.today.month, -1)
        start = month_start(start_year, start_month)
        end = month_end(end_year, end_month)

        average = func.avg(Expense.amount_cents)
        stmt = (
            select(
                Expense.category,
                average.label("average"),
                func.sum(Expense.amount_cents).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(Expense.user_id == self.user_id, Expense.date.between(start, end))
            .group_by(Expense.category)
            .order_by(average.desc())
        )
        recommendations = []
        for row in self.session.execute(stmt):
            average_amount = float(row.average or 0) / 100
            recommendations.append(
                {
                    "category": row.category.value,
                    "averageSpending": _round2(average_amount),
                    "totalSpending": from_cents(int(row.total or 0)),
                    "transactionCount": int(row.count),
                    "recommendedBudget": _round2(average_amount * RECOMMENDATION_BUFFER),
                    "confidence": (
                        "high" if row.count >= HIGH_CONFIDENCE_MIN_COUNT else "medium"
                    ),
                }
            )
        return {"period": f"{months} months", "recommendations": recommendations}


class SummaryService:
    def __init__(
        self, session: Session, user_id: int, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = _current_today(today)

    def _in(self, start: date, end: date) -> list:
        return [Expense.user_id == self.user_id, Expense.date.between(start, end)]

    def _totals(self, start: date, end: date) -> tuple[int, int]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            ).where(*self._in(start, end))
        ).one()
        return int(row.total or 0), int(row.count or 0)

    def _grouped(self, group_column, period: Period) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents)
        stmt = (
            select(
                group_column.label("key"),
                total.label("total"),
                func.count(Expense.id).label("count"),
                func.avg(Expense.amount_cents).label("average"),
                func.min(Expense.amount_cents).label("min"),
                func.max(Expense.amount_cents).label("max"),
            )
            .where(*self._in(period.start, period.end))
            .group_by(group_column)
            .order_by(total.desc())
        )
        return [
            {
                "key": row.key.value,
                "total": int(row.total or 0),
                "count": int(row.count),
                "average": float(row.average or 0) / 100,
                "min": int(row.min or 0),
                "max": int(row.max or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def dashboard(self) -> dict[str, object]:
        current = month_period(self.today.year, self.today.month)
        prev_year, prev_month = add_months(self.today.year, self.today.month, -1)
        previous = month_period(prev_year, prev_month)
        week = iso_week_period(self.today)

        current_total, current_count = self._totals(current.start, current.end)
        previous_total, _ = self._totals(previous.start, previous.end)
        week_total, week_count = self._totals(week.start, week.end)

        change = 0.0
        if previous_total > 0:
            change = _round2((current_total - previous_total) / previous_total * 100)

        top_categories = [
            {"category": row["key"], "total": from_cents(row["total"])}
            for row in self._grouped(Expense.category, current)[:5]
        ]
        budget_status = BudgetService(self.session, self.user_id, self.today).status()
        return {
            "currentMonth": {
                "total": from_cents(current_total),
                "count": current_count,
                "change": change,
            },
            "thisWeek": {"total": from_cents(week_total), "count": week_count},
            "budgetStatus": budget_status[:5],
            "topCategories": top_categories,
            "alerts": sum(
                1 for row in budget_status if row["isOverBudget"] or row["shouldAlert"]
            ),
        }

    def monthly(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> dict[str, object]:
        year = self.today.year if year is None else year
        month = self.today.month if month is None else month
        _check_year(year)
        if not 1 <= month <= 12:
            raise ValidationFailed(
                "Validation failed",
                [{"field": "month", "message": "Month must be between 1 and 12"}],
            )
        rows = self._grouped(Expense.category, month_period(year, month))
        month_year = format_month_year(year, month)
        return {
            "month": month,
            "year": year,
            "monthYear": month_year,
            "totalSpending": from_cents(sum(row["total"] for row in rows)),
            "categoryBreakdown": [
                {
                    "category": row["key"],
                    "totalAmount": from_cents(row["total"]),
                    "count": row["count"],
                    "averageAmount": _round2(row["average"]),
                }
                for row in rows
            ],
            "budgetStatus": BudgetService(
                self.session, self.user_id, self.today
            ).status(month_year),
        }

    @staticmethod
    def _share(part: int, whole: int) -> float:
        return _round2(part / whole * 100) if whole > 0 else 0

    def category_summary(
        self,
        period: Optional[str] = "month",
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, object]:
        window = resolve_range(period, start, end, today=self.today)
        rows = self._grouped(Expense.category, window)
        total = sum(row["total"] for row in rows)
        return {
            "period": period or "month",
            "dateRange": {
                "startDate": window.start.isoformat(),
                "endDate": window.end.isoformat(),
            },
            "totalSpending": from_cents(total),
            "categoryBreakdown": [
                {
                    "category": row["key"],
                    "totalAmount": from_cents(row["total"]),
                    "count": row["count"],
                    "averageAmount": _round2(row["average"]),
                    "minAmount": from_cents(row["min"]),
                    "maxAmount": from_cents(row["max"]),
                    "percentage": self._share(row["total"], total),
                }
                for row in rows
            ],
        }

    def payment_methods(
        self,
        period: Optional[str] = "month",
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, object]:
        window = resolve_range(period, start, end, today=self.today)
        rows = self._grouped(Expense.payment_method, window)
        total = sum(row["total"] for row in rows)
        return {
            "period": period or "month",
            "totalSpending": from_cents(total),
            "paymentMethodBreakdown": [
                {
                    "paymentMethod": row["key"],
                    "totalAmount": from_cents(row["total"]),
                    "count": row["count"],
                    "averageAmount": _round2(row["average"]),
                    "percentage": self._share(row["total"], total),
                }
                for row in rows
            ],
        }

    def _bucket_totals(self, part: str, start: date, end: date) -> dict[int, tuple[int, int]]:
        bucket = extract(part, Expense.date)
        stmt = (
            select(
                bucket.label("bucket"),
                func.sum(Expense.amount_cents).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(*self._in(start, end))
            .group_by(bucket)
        )
        return {
            int(row.bucket): (int(row.total or 0), int(row.count))
            for row in self.session.execute(stmt)
        }

    def trends(self, period: str = "year", year: Optional[int] = None) -> dict[str, object]:
        if period == "month":
            window = month_period(self.today.year, self.today.month)
            by_day = self._bucket_totals("day", window.start, window.end)
            return {
                "period": "monthly",
                "month": self.today.month,
                "year": self.today.year,
                "trends": [
                    {
                        "day": day,
                        "totalAmount": from_cents(by_day.get(day, (0, 0))[0]),
                        "count": by_day.get(day, (0, 0))[1],
                    }
                    for day in range(1, window.end.day + 1)
                ],
            }
        if period != "year":
            raise ValidationFailed(
                "Validation failed",
                [{"field": "period", "message": "Period must be 'year' or 'month'"}],
            )

        year = self.today.year if year is None else year
        _check_year(year)
        by_month = self._bucket_totals("month", date(year, 1, 1), date(year, 12, 31))
        return {
            "period": "yearly",
            "year": year,
            "trends": [
                {
                    "month": month,
                    "monthName": calendar.month_abbr[month],
                    "totalAmount": from_cents(by_month.get(month, (0, 0))[0]),
                    "count": by_month.get(month, (0, 0))[1],
                }
                for month in range(1, 13)
            ],
        }


class ExportService:
    def __init__(
        self,
        session: Session,
        user: User,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user = user
        self.settings = settings or get_settings()
        self.today = _current_today(today)
        self.expenses = ExpenseService(session, user.id, self.today)
        self.budgets = BudgetService(session, user.id, self.today)

    def _export_info(self, filters: dict[str, object]) -> dict[str, object]:
        return {
            "exportedAt": datetime.utcnow().isoformat(),
            "filters": filters,
            "user": {
                "id": str(self.user.id),
                "username": self.user.username,
                "email": self.user.email,
            },
        }

    @staticmethod
    def _filters_dict(filters: ExpenseFilters) -> dict[str, object]:
        return {
            "startDate": filters.start_date.isoformat() if filters.start_date else None,
            "endDate": filters.end_date.isoformat() if filters.end_date else None,
            "category": filters.category.value if filters.category else None,
        }

    def matching_expenses(self, filters: ExpenseFilters) -> list[Expense]:
        expenses = self.expenses.filtered(filters)
        if not expenses:
            raise NotFound("No expenses found for the specified criteria")
        return expenses

    def expenses_csv(self, filters: ExpenseFilters) -> Path:
        expenses = self.matching_expenses(filters)
        path = self.settings.export_dir / export_filename("expenses", "csv")
        write_expenses_csv(expenses, path)
        logger.info(f"export_written: kind=expenses rows={len(expenses)} file={path.name}")
        return path

    def expenses_json(self, filters: ExpenseFilters) -> dict[str, object]:
        expenses = self.matching_expenses(filters)
        info = self._export_info(self._filters_dict(filters))
        info["totalRecords"] = len(expenses)
        return {
            "exportInfo": info,
            "expenses": [expense_to_dict(e) for e in expenses],
        }

    def budgets_csv(self, month_year: Optional[str] = None) -> Path:
        if month_year:
            parse_month_year(month_year)
        budgets = self.budgets.all(month_year)
        if not budgets:
            raise NotFound("No budgets found for the specified criteria")
        path = self.settings.export_dir / export_filename("budgets", "csv")
        write_budgets_csv(budgets, path)
        logger.info(f"export_written: kind=budgets rows={len(budgets)} file={path.name}")
        return path

    def complete(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> dict[str, object]:
        filters = ExpenseFilters(start_date=start_date, end_date=end_date)
        expenses = self.expenses.filtered(filters)
        budgets = self.budgets.all()

        by_category: dict[str, int] = {}
        for expense in expenses:
            key = expense.category.value
            by_category[key] = by_category.get(key, 0) + expense.amount_cents
        category_breakdown = [
            {"category": category, "amount": from_cents(cents)}
            for category, cents in by_category.items()
        ]
        category_breakdown.sort(key=lambda row: row["amount"], reverse=True)

        info = self._export_info(
            {
                "startDate": start_date.isoformat() if start_date else None,
                "endDate": end_date.isoformat() if end_date else None,
            }
        )
        info["summary"] = {
            "totalExpenses": from_cents(sum(e.amount_cents for e in expenses)),
            "expenseCount": len(expenses),
            "budgetCount": len(budgets),
            "categoryBreakdown": category_breakdown,
        }
        return {
            "exportInfo": info,
            "expenses": [expense_to_dict(e) for e in expenses],
            "budgets": [budget_to_dict(b, self.today) for b in budgets],
        }


def remove_export_file(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        logger.exception(f"export_cleanup_failed: file={path.name}")


def sweep_export_dir(export_dir: Path, max_age_hours: float) -> int:
    if not export_dir.exists():
        return 0
    cutoff = time.time() - max_age_hours * 3600
    removed = 0
    for path in export_dir.iterdir():
        if not path.is_file() or path.stat().st_mtime > cutoff:
            continue
        remove_export_file(path)
        removed += 1
    return removed
