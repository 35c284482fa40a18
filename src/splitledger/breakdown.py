"""Per-friend balance breakdowns by group and personal bucket."""

from collections.abc import Iterable
from decimal import Decimal

from .ledger import BALANCE_TOLERANCE, ZERO, round_money
from .models import BreakdownEntry, Expense, Friend, Group, MemberRef, Transaction
from .pairwise import pairwise_balance, resolve_ref


def group_refs(friend: Friend, group: Group) -> tuple[MemberRef, MemberRef] | None:
    """
    Resolve the owner and the friend to their member records in a group.

    Inside a group the owner may appear under a group-specific friend-record
    id, so the group's own member entries are used when present. Returns None
    unless both are current members.
    """
    owner = group.find_member(friend.owner_ref)
    other = group.find_member(friend.ref)
    if owner is None or other is None or owner.ref.matches(other.ref):
        return None
    owner_ref = MemberRef(local_id=owner.id, user_id=owner.user_id or friend.owner_id)
    friend_ref = MemberRef(local_id=other.id, user_id=other.user_id or friend.linked_user_id)
    return owner_ref, friend_ref


def friend_group_amount(
    friend: Friend,
    group: Group,
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
) -> Decimal | None:
    """Amount the friend owes the owner within one group, or None if either left."""
    refs = group_refs(friend, group)
    if refs is None:
        return None
    owner_ref, friend_ref = refs
    aliases = [m.ref for m in group.known_members]
    return pairwise_balance(
        expenses, transactions, owner_ref, friend_ref, group_id=group.id, aliases=aliases
    )


def personal_amount(
    friend: Friend,
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
) -> Decimal:
    """
    Amount the friend owes the owner outside any group.

    The owner may pay under a friend-record id paired with their account id;
    that pairing is recovered from the expenses so settlements naming either
    id still count.
    """
    expenses = list(expenses)
    owner = resolve_ref(friend.owner_id, expenses)
    if owner.user_id is None:
        owner = friend.owner_ref
    return pairwise_balance(expenses, transactions, owner, friend.ref, group_id=None)


def total_balance(entries: Iterable[BreakdownEntry]) -> Decimal:
    return round_money(sum((e.amount for e in entries), ZERO))


def rebuild_breakdown(friend: Friend, group_id: str | None, amount: Decimal | None) -> Friend:
    """
    Replace one bucket of a friend's breakdown and recompute the total.

    The bucket is dropped when ``amount`` is None or within tolerance of zero.
    Returns a new Friend; the input is not modified.
    """
    entries = [e for e in friend.group_breakdown if e.group_id != group_id]
    if amount is not None and abs(amount) > BALANCE_TOLERANCE:
        entries.append(BreakdownEntry(group_id=group_id, amount=round_money(amount)))
    return friend.model_copy(
        update={"group_breakdown": entries, "balance": total_balance(entries)}, deep=True
    )


def drop_group(friend: Friend, group_id: str) -> Friend:
    """Remove a group's bucket and recompute the total from what remains."""
    return rebuild_breakdown(friend, group_id, None)
