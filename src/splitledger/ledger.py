"""Pure ledger math: splits, validation and net balances. No I/O, no side effects."""

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum

from .models import Expense, GroupMember, MemberRef, Split, Transaction

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Balances closer to zero than this are treated as settled
BALANCE_TOLERANCE = Decimal("0.01")


class ExpenseValidationError(ValueError):
    """An expense is malformed and must not be written."""

    pass


class SplitType(str, Enum):
    """How an expense amount is divided among participants."""

    EQUAL = "equal"
    EXACT = "exact"  # Specific amounts per person
    PERCENTAGE = "percentage"
    SHARES = "shares"  # Weighted by integer or decimal shares


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_splits(
    splits: Sequence[Split], total: Decimal, tolerance: Decimal = BALANCE_TOLERANCE
) -> None:
    """
    Validate that owed shares and paid amounts sum to the expense total.

    Paid amounts are only checked when at least one split records a payment;
    an expense with no recorded payments is paid in full by its payer.

    Args:
        splits: Splits to validate
        total: Expected total amount
        tolerance: Acceptable difference (default 0.01 for rounding)

    Raises:
        ExpenseValidationError: If either sum is off by more than ``tolerance``
    """
    splits_sum = sum((s.amount for s in splits), ZERO)
    diff = abs(splits_sum - total)
    if diff > tolerance:
        raise ExpenseValidationError(
            f"Splits sum to {splits_sum} but expense total is {total} "
            f"(difference: {diff}, tolerance: {tolerance})"
        )

    paid_sum = sum((s.paid_amount for s in splits), ZERO)
    if paid_sum == ZERO:
        return
    diff = abs(paid_sum - total)
    if diff > tolerance:
        raise ExpenseValidationError(
            f"Paid amounts sum to {paid_sum} but expense total is {total} "
            f"(difference: {diff}, tolerance: {tolerance})"
        )


def validate_expense(expense: Expense) -> None:
    """
    Reject an expense before it reaches the ledger.

    Raises:
        ExpenseValidationError: On a non-positive amount, missing payer or
            splits, negative shares, or sums that do not match the amount
    """
    if expense.amount <= 0:
        raise ExpenseValidationError(f"Expense amount must be positive, got {expense.amount}")
    if not expense.payer:
        raise ExpenseValidationError("Expense has no payer")
    if not expense.splits:
        raise ExpenseValidationError("Expense has no splits")
    for split in expense.splits:
        if split.amount < 0 or split.paid_amount < 0:
            raise ExpenseValidationError(
                f"Split for {split.user_id} has a negative amount "
                f"(share {split.amount}, paid {split.paid_amount})"
            )
    validate_splits(expense.splits, expense.amount)


def validate_transaction(tx: Transaction) -> None:
    if tx.amount <= 0:
        raise ExpenseValidationError(f"Settlement amount must be positive, got {tx.amount}")
    if tx.from_id == tx.to_id:
        raise ExpenseValidationError("Settlement sender and receiver are the same member")


def compute_equal_splits(total: Decimal, participants: Sequence[str]) -> list[Split]:
    """
    Compute equal splits among participants, handling rounding correctly.

    The first participant gets any rounding remainder so the splits sum
    exactly to ``total``.

    Args:
        total: Total amount to split
        participants: Participant ids, in order

    Returns:
        List of Split objects
    """
    if not participants:
        raise ExpenseValidationError("Cannot split among zero participants")
    return _weighted_splits(total, participants, [Decimal("1")] * len(participants))


def _weighted_splits(
    total: Decimal, participants: Sequence[str], weights: Sequence[Decimal]
) -> list[Split]:
    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        raise ExpenseValidationError("Split weights must sum to a positive number")

    shares = [(total * w / weight_sum).quantize(CENT, rounding=ROUND_DOWN) for w in weights]
    # Whole remainder goes to the first participant
    shares[0] += total - sum(shares, ZERO)
    return [Split(user_id=p, amount=a) for p, a in zip(participants, shares)]


def build_splits(
    total: Decimal,
    split_type: SplitType,
    participants: Sequence[str],
    weights: Mapping[str, Decimal] | None = None,
    paid_by: Mapping[str, Decimal] | None = None,
) -> list[Split]:
    """
    Build the split list for an expense.

    Args:
        total: Expense amount
        split_type: How to divide the amount
        participants: Who shares the expense, in order
        weights: Per-participant amounts (EXACT), percentages (PERCENTAGE)
            or shares (SHARES); ignored for EQUAL
        paid_by: Optional per-participant paid amounts for multi-payer expenses

    Returns:
        List of Split objects; amounts sum exactly to ``total``
    """
    if not participants:
        raise ExpenseValidationError("Cannot split among zero participants")

    if split_type == SplitType.EQUAL:
        splits = compute_equal_splits(total, participants)
    else:
        if weights is None:
            raise ExpenseValidationError(f"{split_type.value} split requires weights")
        missing = [p for p in participants if p not in weights]
        if missing:
            raise ExpenseValidationError(f"No {split_type.value} given for {', '.join(missing)}")
        values = [Decimal(weights[p]) for p in participants]

        if split_type == SplitType.EXACT:
            splits = [Split(user_id=p, amount=v) for p, v in zip(participants, values)]
        elif split_type == SplitType.PERCENTAGE:
            if abs(sum(values, ZERO) - Decimal("100")) > CENT:
                raise ExpenseValidationError(f"Percentages sum to {sum(values, ZERO)}, not 100")
            splits = _weighted_splits(total, participants, values)
        else:
            splits = _weighted_splits(total, participants, values)

    if paid_by:
        unknown = set(paid_by) - set(participants)
        if unknown:
            raise ExpenseValidationError(
                f"Payers {', '.join(sorted(unknown))} are not split participants"
            )
        splits = [
            s.model_copy(update={"paid_amount": Decimal(paid_by.get(s.user_id, ZERO))})
            for s in splits
        ]

    validate_splits(splits, total)
    return splits


def expense_deltas(expense: Expense) -> dict[str, Decimal]:
    """
    Net effect of one expense per raw participant id (paid minus owed).

    Single-payer: the payer is credited the full amount. Multi-payer: each
    split is credited its ``paid_amount``; any unpaid remainder goes to the
    payer. A split naming the payer by either recorded id is keyed like the
    payer, so one person never shows up as two entries.
    """
    deltas: dict[str, Decimal] = defaultdict(lambda: ZERO)
    paid_total = ZERO
    payer = expense.payer_ref

    for split in expense.splits:
        key = expense.payer if payer.matches_id(split.user_id) else split.user_id
        deltas[key] += split.paid_amount - split.amount
        paid_total += split.paid_amount

    unpaid = expense.amount - paid_total
    if unpaid > BALANCE_TOLERANCE:
        deltas[expense.payer] += unpaid

    return dict(deltas)


def transaction_deltas(tx: Transaction) -> dict[str, Decimal]:
    """The sender discharges debt (+amount); the receiver is owed less (-amount)."""
    return {tx.from_id: tx.amount, tx.to_id: -tx.amount}


def resolve_key(raw_id: str, members: Iterable[GroupMember] | None) -> str:
    """Fold a raw id onto a member's canonical key; unknown ids are kept as-is."""
    if members:
        for member in members:
            ref = member.ref
            if ref.matches_id(raw_id):
                return ref.key
    return raw_id


def compute_net_balances(
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
    members: Sequence[GroupMember] | None = None,
    former_members: Sequence[GroupMember] | None = None,
) -> dict[str, Decimal]:
    """
    Fold a ledger into net balances.

    Positive balance = member is owed money (paid more than their share)
    Negative balance = member owes money (paid less than their share)

    Soft-deleted records are skipped. When ``members`` is given, friend-record
    ids and auth ids are merged under each member's canonical key and every
    member appears in the result, even at zero.

    Args:
        expenses: Expenses in scope (group or personal)
        transactions: Settlements in scope
        members: Optional member list used to canonicalize ids
        former_members: Members who left; their ids are merged the same way
            but they only appear when the ledger touches them

    Returns:
        Dict mapping member key to net balance, rounded to cents
    """
    known = list(members or []) + list(former_members or [])
    balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
    if members:
        for member in members:
            balances[member.ref.key] = ZERO

    for expense in expenses:
        if expense.deleted:
            continue
        for raw_id, delta in expense_deltas(expense).items():
            balances[resolve_key(raw_id, known)] += delta

    for tx in transactions:
        if tx.deleted:
            continue
        for raw_id, delta in transaction_deltas(tx).items():
            balances[resolve_key(raw_id, known)] += delta

    return {key: round_money(balance) for key, balance in balances.items()}


def balance_of(balances: Mapping[str, Decimal], member: MemberRef) -> Decimal:
    """Look up a member's balance under either of their identities."""
    total = ZERO
    for key, balance in balances.items():
        if member.matches_id(key):
            total += balance
    return total


def is_settled(balance: Decimal, tolerance: Decimal = BALANCE_TOLERANCE) -> bool:
    return abs(balance) < tolerance


def outstanding_balances(
    balances: Mapping[str, Decimal], tolerance: Decimal = BALANCE_TOLERANCE
) -> dict[str, Decimal]:
    """Entries that are not within tolerance of zero."""
    return {k: v for k, v in balances.items() if not is_settled(v, tolerance)}
