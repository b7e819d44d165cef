from datetime import date
from decimal import Decimal

import pytest

from conftest import TODAY, add_expense, make_user
from errors import ValidationFailed
from models import ExpenseCategory, PaymentMethod
from schemas import BudgetIn
from services import BudgetService, SummaryService

TRAVEL = ExpenseCategory.travel


@pytest.fixture
def seeded(session, user):
    add_expense(session, user.id, 60, date(2025, 2, 10))
    add_expense(session, user.id, 40, date(2025, 2, 20), category=TRAVEL)
    add_expense(session, user.id, 100, date(2025, 3, 1))
    add_expense(
        session,
        user.id,
        50,
        date(2025, 3, 12),
        category=TRAVEL,
        method=PaymentMethod.credit_card,
    )
    return user


def test_dashboard(session, seeded) -> None:
    BudgetService(session, seeded.id, today=TODAY).create(
        BudgetIn(category=TRAVEL, amount_limit=Decimal("40"))
    )

    data = SummaryService(session, seeded.id, today=TODAY).dashboard()

    assert data["currentMonth"] == {"total": 150.0, "count": 2, "change": 50.0}
    # Monday 10th through Sunday 16th
    assert data["thisWeek"] == {"total": 50.0, "count": 1}
    assert data["topCategories"] == [
        {"category": "Food & Dining", "total": 100.0},
        {"category": "Travel", "total": 50.0},
    ]
    assert data["alerts"] == 1
    assert data["budgetStatus"][0]["isOverBudget"] is True


def test_dashboard_change_is_zero_without_previous_month(session, user) -> None:
    add_expense(session, user.id, 10, date(2025, 3, 1))

    data = SummaryService(session, user.id, today=TODAY).dashboard()

    assert data["currentMonth"]["change"] == 0


def test_monthly(session, seeded) -> None:
    data = SummaryService(session, seeded.id, today=TODAY).monthly(2025, 2)

    assert data["monthYear"] == "2025-02"
    assert data["totalSpending"] == 100.0
    assert data["categoryBreakdown"] == [
        {"category": "Food & Dining", "totalAmount": 60.0, "count": 1, "averageAmount": 60.0},
        {"category": "Travel", "totalAmount": 40.0, "count": 1, "averageAmount": 40.0},
    ]
    assert data["budgetStatus"] == []


def test_monthly_rejects_bad_month(session, user) -> None:
    with pytest.raises(ValidationFailed):
        SummaryService(session, user.id, today=TODAY).monthly(2025, 13)


def test_category_summary_percentages(session, seeded) -> None:
    data = SummaryService(session, seeded.id, today=TODAY).category_summary("month")

    assert data["totalSpending"] == 150.0
    food, travel = data["categoryBreakdown"]
    assert food["percentage"] == 66.67
    assert travel["percentage"] == 33.33
    assert food["minAmount"] == food["maxAmount"] == 100.0


def test_category_summary_date_range_wins(session, seeded) -> None:
    data = SummaryService(session, seeded.id, today=TODAY).category_summary(
        "year", date(2025, 2, 15), date(2025, 3, 5)
    )

    assert data["dateRange"] == {"startDate": "2025-02-15", "endDate": "2025-03-05"}
    assert data["totalSpending"] == 140.0


def test_category_summary_rejects_inverted_range(session, user) -> None:
    with pytest.raises(ValidationFailed):
        SummaryService(session, user.id, today=TODAY).category_summary(
            None, date(2025, 3, 5), date(2025, 3, 1)
        )


def test_payment_methods(session, seeded) -> None:
    data = SummaryService(session, seeded.id, today=TODAY).payment_methods("month")

    assert [row["paymentMethod"] for row in data["paymentMethodBreakdown"]] == [
        "Cash",
        "Credit Card",
    ]
    assert data["paymentMethodBreakdown"][1]["percentage"] == 33.33


def test_yearly_trends_are_zero_filled(session, user) -> None:
    add_expense(session, user.id, 25, date(2025, 3, 3))
    add_expense(session, user.id, 75, date(2025, 11, 20))
    add_expense(session, user.id, 999, date(2024, 11, 20))

    data = SummaryService(session, user.id, today=TODAY).trends("year", 2025)

    assert len(data["trends"]) == 12
    assert data["trends"][0] == {
        "month": 1,
        "monthName": "Jan",
        "totalAmount": 0.0,
        "count": 0,
    }
    active = {row["month"]: row["totalAmount"] for row in data["trends"] if row["count"]}
    assert active == {3: 25.0, 11: 75.0}


def test_monthly_trends_have_a_bucket_per_day(session, seeded) -> None:
    data = SummaryService(session, seeded.id, today=TODAY).trends("month")

    assert len(data["trends"]) == 31
    assert data["trends"][0]["totalAmount"] == 100.0
    assert data["trends"][11] == {"day": 12, "totalAmount": 50.0, "count": 1}
    assert sum(row["count"] for row in data["trends"]) == 2


def test_summaries_are_scoped_to_owner(session, seeded) -> None:
    other = make_user(session, username="bob", email="bob@example.com")

    data = SummaryService(session, other.id, today=TODAY).dashboard()

    assert data["currentMonth"] == {"total": 0.0, "count": 0, "change": 0}
    assert data["topCategories"] == []


@pytest.mark.parametrize("year", [0, 1969, 3001, 99999])
def test_out_of_range_years_are_rejected(session, user, year) -> None:
    service = SummaryService(session, user.id, today=TODAY)

    with pytest.raises(ValidationFailed):
        service.monthly(year, 1)
    with pytest.raises(ValidationFailed):
        service.trends("year", year)
