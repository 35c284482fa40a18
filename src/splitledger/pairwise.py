"""Pairwise balances between two members, replayed from the raw ledger.

Sign convention throughout: positive means ``second`` owes ``first``.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal
from itertools import combinations

from .ledger import BALANCE_TOLERANCE, ZERO, expense_deltas, round_money
from .models import Debt, Expense, Friend, GroupMember, MemberRef, SettlementCheck, Transaction
from .simplify import from_cents, settle_greedy, to_cents


class SettlementDirectionError(ValueError):
    """A settle-up would increase a debt instead of reducing it."""

    pass


class _AnyGroup:
    def __repr__(self) -> str:
        return "ANY_GROUP"


# Sentinel for "do not filter by group"; None already means the personal scope
ANY_GROUP = _AnyGroup()


def _pair_key(
    raw_id: str, first: MemberRef, second: MemberRef, aliases: Sequence[MemberRef] = ()
) -> str:
    if first.matches_id(raw_id):
        return first.key
    if second.matches_id(raw_id):
        return second.key
    for ref in aliases:
        if ref.matches_id(raw_id):
            return ref.key
    return raw_id


def expense_pair_effect(
    expense: Expense,
    first: MemberRef,
    second: MemberRef,
    aliases: Sequence[MemberRef] = (),
) -> Decimal:
    """
    Signed effect of one expense between two members.

    The expense is decomposed into (payer, payee) transfers: for a single
    payer every participant pays back their share; for multi-payer expenses
    participants' net positions are paired greedily. Only transfers between
    ``first`` and ``second`` are counted.

    Args:
        expense: The expense to decompose
        first: Member whose position is reported
        second: Counterparty
        aliases: Other known people, so a third participant recorded under
            both of their ids is still one node in the decomposition

    Returns:
        Amount ``second`` owes ``first`` because of this expense (negative if
        ``first`` owes ``second``)
    """
    nets: dict[str, int] = defaultdict(int)
    for raw_id, delta in expense_deltas(expense).items():
        nets[_pair_key(raw_id, first, second, aliases)] += to_cents(delta)

    cents = 0
    for debtor, creditor, amount in settle_greedy(nets):
        if debtor == second.key and creditor == first.key:
            cents += amount
        elif debtor == first.key and creditor == second.key:
            cents -= amount
    return from_cents(cents)


def transaction_pair_effect(tx: Transaction, first: MemberRef, second: MemberRef) -> Decimal:
    """+amount when ``first`` paid ``second``, -amount for the reverse, else 0."""
    if first.matches_id(tx.from_id) and second.matches_id(tx.to_id):
        return tx.amount
    if second.matches_id(tx.from_id) and first.matches_id(tx.to_id):
        return -tx.amount
    return ZERO


def _in_scope(group_id: str | None, scope: object) -> bool:
    return scope is ANY_GROUP or group_id == scope


def pairwise_balance(
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
    first: MemberRef,
    second: MemberRef,
    group_id: object = ANY_GROUP,
    aliases: Sequence[MemberRef] = (),
) -> Decimal:
    """
    Replay every non-deleted record involving both members.

    Args:
        expenses: Candidate expenses
        transactions: Candidate settlements
        first: Member whose position is reported
        second: Counterparty
        group_id: Restrict to one group, None for personal records, or
            ANY_GROUP for everything
        aliases: Other known people (see ``expense_pair_effect``)

    Returns:
        Amount ``second`` owes ``first``, rounded to cents
    """
    total = ZERO
    for expense in expenses:
        if expense.deleted or not _in_scope(expense.group_id, group_id):
            continue
        if expense.involves(first) and expense.involves(second):
            total += expense_pair_effect(expense, first, second, aliases)

    for tx in transactions:
        if tx.deleted or not _in_scope(tx.group_id, group_id):
            continue
        total += transaction_pair_effect(tx, first, second)

    return round_money(total)


def pairwise_debts(
    members: Sequence[GroupMember],
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
    group_id: object = ANY_GROUP,
    former_members: Sequence[GroupMember] = (),
) -> list[Debt]:
    """
    Raw-ledger view of who owes whom: one edge per pair with a nonzero balance.

    Edges use member canonical keys and are ordered by member position.
    """
    expenses = list(expenses)
    transactions = list(transactions)
    aliases = [m.ref for m in [*members, *former_members]]
    debts: list[Debt] = []

    for a, b in combinations(members, 2):
        balance = pairwise_balance(expenses, transactions, a.ref, b.ref, group_id, aliases)
        if abs(balance) <= BALANCE_TOLERANCE:
            continue
        if balance > 0:
            debts.append(Debt(from_id=b.ref.key, to_id=a.ref.key, amount=balance))
        else:
            debts.append(Debt(from_id=a.ref.key, to_id=b.ref.key, amount=-balance))

    return debts


def resolve_ref(
    raw_id: str,
    expenses: Iterable[Expense] = (),
    friends: Iterable[Friend] = (),
) -> MemberRef:
    """
    Recover both identities of a person named by one raw id outside a group.

    Candidates are the payer id pairs recorded on expenses, then friend
    records linking the id to an account. The first candidate whose other id
    the expenses actually use wins; otherwise the first candidate. Falls back
    to a ref carrying only ``raw_id``.
    """
    expenses = list(expenses)
    candidates = [
        e.payer_ref
        for e in expenses
        if e.payer_user_id and e.payer_user_id != e.payer_id and e.payer_ref.matches_id(raw_id)
    ]
    candidates += [f.ref for f in friends if f.linked_user_id and f.ref.matches_id(raw_id)]
    if not candidates:
        return MemberRef(local_id=raw_id)

    used = {e.payer_id for e in expenses} | {e.payer_user_id for e in expenses}
    used |= {s.user_id for e in expenses for s in e.splits}
    for ref in candidates:
        if any(i != raw_id and i in used for i in ref.ids):
            return ref
    return candidates[0]


def check_settlement(
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
    payer: MemberRef,
    payee: MemberRef,
    amount: Decimal,
    group_id: object = ANY_GROUP,
    acknowledge_overpayment: bool = False,
    aliases: Sequence[MemberRef] = (),
) -> SettlementCheck:
    """
    Validate the direction of a settle-up before it is recorded.

    A payment must reduce an existing debt of ``payer`` to ``payee``. Paying
    more than is owed, or paying when nothing is owed, flips the balance and
    is only accepted when ``acknowledge_overpayment`` is set.

    Raises:
        SettlementDirectionError: If the payment is not allowed
    """
    if amount <= 0:
        raise SettlementDirectionError(f"Settlement amount must be positive, got {amount}")

    # Negative: payer owes payee
    before = pairwise_balance(expenses, transactions, payer, payee, group_id, aliases)
    after = round_money(before + amount)
    owed = -before if before < 0 else ZERO
    overpayment = amount - owed > BALANCE_TOLERANCE

    if overpayment and not acknowledge_overpayment:
        if owed <= BALANCE_TOLERANCE:
            raise SettlementDirectionError(
                f"{payer.key} does not owe {payee.key}; recording {amount} "
                "would create a debt in the other direction"
            )
        raise SettlementDirectionError(
            f"{payer.key} owes {payee.key} {owed}; paying {amount} "
            f"overpays by {round_money(amount - owed)}"
        )

    return SettlementCheck(balance_before=before, balance_after=after, overpayment=overpayment)
