"""Consistency checks that gate destructive group operations.

Checks read the group's cached ``user_balances``. A rejection is a normal
outcome returned as a GuardResult, never raised.
"""

from decimal import Decimal

from . import templates
from .ledger import BALANCE_TOLERANCE, balance_of, is_settled, outstanding_balances
from .models import Group, GuardResult, MemberRef

DELETE_GROUP = "delete_group"
LEAVE_GROUP = "leave_group"
REMOVE_MEMBER = "remove_member"


def _name_for(group: Group):
    def name(member_id: str) -> str:
        member = group.member_for_id(member_id)
        return member.display_name if member else member_id

    return name


def can_delete_group(group: Group, tolerance: Decimal = BALANCE_TOLERANCE) -> GuardResult:
    """Allow deletion only when every cached balance in the group is settled."""
    outstanding = outstanding_balances(group.user_balances, tolerance)
    if not outstanding:
        return GuardResult(allowed=True, operation=DELETE_GROUP)

    details = templates.format_outstanding(outstanding, group.currency, _name_for(group))
    return GuardResult(
        allowed=False,
        operation=DELETE_GROUP,
        reason=templates.DELETE_GROUP_BLOCKED.format(group=group.name or group.id, details=details),
        outstanding=outstanding,
    )


def _member_guard(
    group: Group,
    member: MemberRef,
    operation: str,
    template: str,
    tolerance: Decimal,
) -> GuardResult:
    group_member = group.find_member(member)
    display = group_member.display_name if group_member else member.key
    if group_member is None:
        return GuardResult(
            allowed=False,
            operation=operation,
            reason=templates.NOT_A_MEMBER.format(member=display, group=group.name or group.id),
        )

    balance = balance_of(group.user_balances, group_member.ref)
    if is_settled(balance, tolerance):
        return GuardResult(allowed=True, operation=operation)

    outstanding = {group_member.ref.key: balance}
    details = templates.format_outstanding(outstanding, group.currency, _name_for(group))
    return GuardResult(
        allowed=False,
        operation=operation,
        reason=template.format(member=display, group=group.name or group.id, details=details),
        outstanding=outstanding,
    )


def can_leave_group(
    group: Group, member: MemberRef, tolerance: Decimal = BALANCE_TOLERANCE
) -> GuardResult:
    """Allow a member to leave only when their own balance is settled."""
    return _member_guard(group, member, LEAVE_GROUP, templates.LEAVE_GROUP_BLOCKED, tolerance)


def can_remove_member(
    group: Group, member: MemberRef, tolerance: Decimal = BALANCE_TOLERANCE
) -> GuardResult:
    """Allow removing a member only when that member's balance is settled."""
    return _member_guard(group, member, REMOVE_MEMBER, templates.REMOVE_MEMBER_BLOCKED, tolerance)
