"""Group spending summary - a read-only view of who consumed what.

Spend is each member's owed share (``split.amount``), not what they paid:
a member who fronted a dinner but ate nothing spent nothing. Settlements are
not spending and are ignored, as are soft-deleted expenses.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal

from .ledger import resolve_key
from .models import Expense, GroupMember, MemberSpend, SpendingSummary
from .simplify import from_cents, to_cents


def group_spending_summary(
    expenses: Iterable[Expense],
    group_id: str,
    members: Sequence[GroupMember],
    former_members: Sequence[GroupMember] = (),
) -> SpendingSummary:
    """
    Total spend of a group and each member's consumed share.

    Args:
        expenses: Candidate expenses; filtered to the group, deleted skipped
        group_id: Group to summarize
        members: Current members, all listed even at zero spend
        former_members: Members who left; their shares still fold onto one key

    Returns:
        SpendingSummary with amounts summed in integer cents
    """
    known = [*members, *former_members]
    total_cents = 0
    per_member: dict[str, int] = defaultdict(int)
    for member in members:
        per_member[member.ref.key] = 0

    for expense in expenses:
        if expense.deleted or expense.group_id != group_id:
            continue
        total_cents += to_cents(expense.amount)
        for split in expense.splits:
            if not split.user_id:
                continue
            per_member[resolve_key(split.user_id, known)] += to_cents(split.amount)

    return SpendingSummary(
        group_id=group_id,
        total_spend=from_cents(total_cents),
        per_member={key: from_cents(cents) for key, cents in per_member.items()},
    )


def spending_breakdown(
    summary: SpendingSummary, members: Sequence[GroupMember]
) -> list[MemberSpend]:
    """Per-member spend with its share of the total, largest spender first."""
    rows = []
    for member_id, spend in summary.per_member.items():
        member = next((m for m in members if m.ref.matches_id(member_id)), None)
        percentage = Decimal("0")
        if summary.total_spend > 0:
            percentage = (spend * 100 / summary.total_spend).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        rows.append(
            MemberSpend(
                member_id=member_id,
                name=member.display_name if member else member_id,
                avatar=member.avatar if member else "",
                spend=spend,
                percentage=percentage,
            )
        )
    rows.sort(key=lambda row: (-row.spend, row.member_id))
    return rows
