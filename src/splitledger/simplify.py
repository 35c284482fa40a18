"""Debt simplification: net balances to a minimal set of directed payments.

Pure functions. All matching is done in integer cents so that repeated
subtraction never drifts.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from .models import Debt, MemberBalance

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Largest acceptable |sum of balances| before simplification refuses to run
INTEGRITY_TOLERANCE_CENTS = 1


class BalanceIntegrityError(Exception):
    """Balances do not sum to zero, so no simplified view can be trusted."""

    def __init__(self, total_cents: int):
        self.total_cents = total_cents
        super().__init__(
            f"Balances sum to {from_cents(total_cents)}, expected 0 "
            f"(tolerance {from_cents(INTEGRITY_TOLERANCE_CENTS)})"
        )


def to_cents(amount: Decimal) -> int:
    """Convert an amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def _normalize(
    balances: Mapping[str, Decimal] | Iterable[MemberBalance],
) -> dict[str, Decimal]:
    if isinstance(balances, Mapping):
        return dict(balances)
    result: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for entry in balances:
        result[entry.member_id] += entry.balance
    return dict(result)


def _sort_key(item: tuple[str, int]) -> tuple[int, str]:
    # Largest amount first, member id ascending on ties
    member_id, amount = item
    return (-amount, member_id)


def settle_greedy(nets: Mapping[str, int]) -> list[tuple[str, str, int]]:
    """
    Greedily pair debtors with creditors over integer-cent net positions.

    Args:
        nets: Member id to net cents (positive = owed, negative = owes)

    Returns:
        List of (debtor, creditor, cents) transfers. Zero entries are ignored.
        Any imbalance in ``nets`` is left unmatched.
    """
    debtors = sorted(((m, -c) for m, c in nets.items() if c < 0), key=_sort_key)
    creditors = sorted(((m, c) for m, c in nets.items() if c > 0), key=_sort_key)

    transfers: list[tuple[str, str, int]] = []
    di = ci = 0
    debt = debtors[0][1] if debtors else 0
    credit = creditors[0][1] if creditors else 0

    while di < len(debtors) and ci < len(creditors):
        amount = min(debt, credit)
        transfers.append((debtors[di][0], creditors[ci][0], amount))
        debt -= amount
        credit -= amount

        if debt == 0:
            di += 1
            if di < len(debtors):
                debt = debtors[di][1]
        if credit == 0:
            ci += 1
            if ci < len(creditors):
                credit = creditors[ci][1]

    return transfers


def simplify_strict(balances: Mapping[str, Decimal] | Iterable[MemberBalance]) -> list[Debt]:
    """
    Compute the minimum set of payments that zeroes every balance.

    Members whose balance rounds to zero cents are ignored. The result has at
    most N - 1 edges for N members with a nonzero balance.

    Args:
        balances: Member id to net balance, or a list of MemberBalance

    Returns:
        List of Debt edges, debtor to creditor, each with a positive amount

    Raises:
        BalanceIntegrityError: If the balances do not sum to zero within a cent
    """
    nets = {m: to_cents(b) for m, b in _normalize(balances).items()}
    nets = {m: c for m, c in nets.items() if c != 0}

    total = sum(nets.values())
    if abs(total) > INTEGRITY_TOLERANCE_CENTS:
        raise BalanceIntegrityError(total)

    return [
        Debt(from_id=debtor, to_id=creditor, amount=from_cents(cents))
        for debtor, creditor, cents in settle_greedy(nets)
    ]


def verify_debts(
    balances: Mapping[str, Decimal] | Iterable[MemberBalance],
    debts: Iterable[Debt],
    tolerance_cents: int = INTEGRITY_TOLERANCE_CENTS,
) -> bool:
    """
    Check that executing ``debts`` would settle exactly the given balances.

    For each member, incoming minus outgoing must equal their balance.
    """
    expected = {m: to_cents(b) for m, b in _normalize(balances).items()}
    implied: dict[str, int] = defaultdict(int)
    for debt in debts:
        if debt.amount <= 0:
            return False
        cents = to_cents(debt.amount)
        implied[debt.to_id] += cents
        implied[debt.from_id] -= cents

    for member in set(expected) | set(implied):
        diff = expected.get(member, 0) - implied.get(member, 0)
        if abs(diff) > tolerance_cents:
            logger.warning(
                "Simplified debts mismatch for %s: balance %s, implied %s",
                member,
                from_cents(expected.get(member, 0)),
                from_cents(implied.get(member, 0)),
            )
            return False
    return True


def simplify_debts(
    balances: Mapping[str, Decimal] | Iterable[MemberBalance],
) -> list[Debt] | None:
    """
    Safe wrapper around ``simplify_strict``.

    Returns None when the balances fail the integrity check or the result does
    not preserve every member's position. Callers fall back to the raw ledger.
    """
    normalized = _normalize(balances)
    try:
        debts = simplify_strict(normalized)
    except BalanceIntegrityError as e:
        logger.warning("Cannot simplify debts: %s", e)
        return None

    if not verify_debts(normalized, debts):
        return None

    logger.debug("Simplified %d balances into %d debts", len(normalized), len(debts))
    return debts
