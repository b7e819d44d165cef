import csv
import re
from datetime import datetime
from pathlib import Path
from typing import Sequence

from models import Budget, Expense

EXPENSE_HEADER = [
    "Date",
    "Category",
    "Amount",
    "Payment Method",
    "Description",
    "Tags",
    "Created At",
]
BUDGET_HEADER = [
    "Month-Year",
    "Category",
    "Budget Limit",
    "Active",
    "Notifications Enabled",
    "Notification Threshold",
    "Created At",
]
TAG_DELIMITER = ", "


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def export_filename(prefix: str, extension: str) -> str:
    timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{prefix}-{timestamp}.{extension}"


def expense_row(expense: Expense) -> list[str]:
    return [
        expense.date.isoformat(),
        expense.category.value,
        f"{expense.amount_cents / 100:.2f}",
        expense.payment_method.value,
        sanitize_csv_value(expense.description),
        sanitize_csv_value(TAG_DELIMITER.join(expense.tags)),
        expense.created_at.isoformat(),
    ]


def budget_row(budget: Budget) -> list[str]:
    return [
        budget.month_year,
        budget.category.value,
        f"{budget.amount_limit_cents / 100:.2f}",
        "true" if budget.is_active else "false",
        "true" if budget.notifications_enabled else "false",
        f"{budget.notification_threshold:g}",
        budget.created_at.isoformat(),
    ]


def _write(path: Path, header: list[str], rows) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            writer.writerow(row)
    return path


def write_expenses_csv(expenses: Sequence[Expense], path: Path) -> Path:
    return _write(path, EXPENSE_HEADER, (expense_row(e) for e in expenses))


def write_budgets_csv(budgets: Sequence[Budget], path: Path) -> Path:
    return _write(path, BUDGET_HEADER, (budget_row(b) for b in budgets))
