import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Any, Mapping


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
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: object) -> int:
    """Convert a user-entered amount such as ``"45"``, ``"45,50"`` or ``"$1 200.00"`` to cents."""
    clean = str(value).strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents <= 0:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_budget(budget: Mapping[str, Any]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Title", "Amount", "Paid", "Installment"])
    for item in budget.get("line_items") or []:
        installment = ""
        if item.get("is_payment_plan"):
            installment = f"{item.get('current_payment') or 0}/{item.get('total_payments') or 0}"
        writer.writerow(
            [
                sanitize_csv_value(item.get("title") or ""),
                format_cents(int(item["amount_cents"])),
                "1" if item.get("paid") else "0",
                installment,
            ]
        )
    writer.writerow([])
    writer.writerow(["Total income", format_cents(int(budget["total_income_cents"])), "", ""])
    writer.writerow(
        ["Total expenses", format_cents(int(budget["total_expenses_cents"])), "", ""]
    )
    writer.writerow(["Balance", format_cents(int(budget["balance_cents"])), "", ""])
    return output.getvalue()
