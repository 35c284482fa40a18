"""User-facing message templates - all text surfaced to end users lives here.

Guard rejections and warnings are shown verbatim by the request layer, so
they must read well on their own.
"""

from collections.abc import Callable, Mapping
from decimal import Decimal

from .models import Debt

# Currency symbols for display
CURRENCY_SYMBOLS: dict[str, str] = {
    "ILS": "₪",
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}


def get_currency_symbol(currency_code: str) -> str:
    """Get display symbol for currency code."""
    return CURRENCY_SYMBOLS.get(currency_code.upper(), currency_code)


def format_currency(amount: Decimal, currency: str) -> str:
    """Format amount with currency symbol and two decimals."""
    symbol = get_currency_symbol(currency)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):.2f}"


def format_debts_list(
    debts: list[Debt],
    currency: str,
    name_for: Callable[[str], str] | None = None,
) -> str:
    """Format list of debts for display."""
    if not debts:
        return ALL_SETTLED

    name = name_for or (lambda member_id: member_id)
    lines = []
    for debt in debts:
        lines.append(
            f"• {name(debt.from_id)} → {name(debt.to_id)}: "
            f"{format_currency(debt.amount, currency)}"
        )
    return "\n".join(lines)


def format_balance_line(name: str, balance: Decimal, currency: str) -> str:
    if balance > 0:
        return f"{name} is owed {format_currency(balance, currency)}"
    if balance < 0:
        return f"{name} owes {format_currency(-balance, currency)}"
    return f"{name} is settled up"


def format_spend_line(name: str, spend: Decimal, percentage: Decimal, currency: str) -> str:
    return f"{name}: {format_currency(spend, currency)} ({percentage}%)"


def format_outstanding(
    outstanding: Mapping[str, Decimal],
    currency: str,
    name_for: Callable[[str], str] | None = None,
) -> str:
    """Comma-separated description of unsettled balances."""
    name = name_for or (lambda member_id: member_id)
    return ", ".join(
        format_balance_line(name(member_id), balance, currency)
        for member_id, balance in outstanding.items()
    )


ALL_SETTLED = "✨ All settled up!"

# === GUARD REJECTIONS ===

DELETE_GROUP_BLOCKED = (
    "Cannot delete group '{group}': outstanding balances remain ({details}). "
    "Settle up before deleting the group."
)

LEAVE_GROUP_BLOCKED = (
    "Cannot leave group '{group}': you have an outstanding balance ({details}). "
    "Settle up before leaving."
)

REMOVE_MEMBER_BLOCKED = (
    "Cannot remove {member} from '{group}': they have an outstanding balance "
    "({details}). Settle up first."
)

NOT_A_MEMBER = "{member} is not a member of '{group}'."

# === WARNINGS ===

SIMPLIFICATION_UNAVAILABLE = (
    "⚠️ Simplified debts are unavailable right now; showing individual balances instead."
)
