"""Tests for pairwise balances and settle-up direction checks."""

from decimal import Decimal

import pytest

from splitledger import pairwise
from splitledger.models import Expense, Friend, GroupMember, MemberRef, Split, Transaction
from splitledger.pairwise import ANY_GROUP, SettlementDirectionError

A = MemberRef(local_id="f-a", user_id="u-a")
B = MemberRef(local_id="f-b", user_id="u-b")
C = MemberRef(local_id="f-c")


def _single(amount: str, payer: str, shares: dict[str, str], group_id: str | None = "g") -> Expense:
    return Expense(
        amount=Decimal(amount),
        payer_id=payer,
        group_id=group_id,
        splits=[Split(user_id=p, amount=Decimal(a)) for p, a in shares.items()],
    )


@pytest.fixture
def multi_payer() -> Expense:
    """1200 split equally; A fronted 1000, B fronted 200."""
    return Expense(
        amount=Decimal("1200"),
        payer_id="u-a",
        group_id="g",
        splits=[
            Split(user_id="u-a", amount=Decimal("400"), paid_amount=Decimal("1000")),
            Split(user_id="u-b", amount=Decimal("400"), paid_amount=Decimal("200")),
            Split(user_id="f-c", amount=Decimal("400")),
        ],
    )


class TestExpensePairEffect:
    """Tests for the effect of one expense between two members."""

    def test_first_paid(self) -> None:
        """Test that the second member owes their share when the first paid."""
        expense = _single("90", "u-a", {"u-a": "30", "u-b": "30", "f-c": "30"})
        assert pairwise.expense_pair_effect(expense, A, B) == Decimal("30")

    def test_second_paid(self) -> None:
        expense = _single("90", "u-a", {"u-a": "30", "u-b": "30", "f-c": "30"})
        assert pairwise.expense_pair_effect(expense, B, A) == Decimal("-30")

    def test_neither_paid(self) -> None:
        expense = _single("90", "u-a", {"u-a": "30", "u-b": "30", "f-c": "30"})
        assert pairwise.expense_pair_effect(expense, B, C) == Decimal("0")

    def test_matches_mixed_identities(self) -> None:
        """Test that a payer named by friend id and a split by auth id still pair."""
        expense = _single("50", "f-a", {"u-a": "25", "f-b": "25"})
        assert pairwise.expense_pair_effect(expense, A, B) == Decimal("25")

    def test_multi_payer(self, multi_payer: Expense) -> None:
        """Test that B owes A exactly the 200 B under-paid."""
        assert pairwise.expense_pair_effect(multi_payer, A, B) == Decimal("200")
        assert pairwise.expense_pair_effect(multi_payer, A, C) == Decimal("400")
        assert pairwise.expense_pair_effect(multi_payer, B, C) == Decimal("0")

    def test_penny_split(self) -> None:
        """Test that uneven thirds are attributed to the exact cent."""
        expense = _single("100", "u-a", {"u-a": "33.33", "u-b": "33.33", "f-c": "33.34"})
        assert pairwise.expense_pair_effect(expense, A, B) == Decimal("33.33")
        assert pairwise.expense_pair_effect(expense, A, C) == Decimal("33.34")

    def test_third_party_under_both_ids(self) -> None:
        """Test that a third participant recorded under two ids is one person."""
        dave = MemberRef(local_id="f-d", user_id="u-d")
        expense = Expense(
            amount=Decimal("90"),
            payer_id="f-a",
            group_id="g",
            splits=[
                Split(user_id="u-a", amount=Decimal("30"), paid_amount=Decimal("60")),
                Split(user_id="u-b", amount=Decimal("30")),
                Split(user_id="f-d", amount=Decimal("30")),
                Split(user_id="u-d", amount=Decimal("0"), paid_amount=Decimal("30")),
            ],
        )
        assert pairwise.expense_pair_effect(expense, A, B, aliases=[dave]) == Decimal("30")

    def test_payer_pair_folds_third_party(self) -> None:
        """Test that a third-party payer's split under their friend id nets out."""
        expense = Expense(
            amount=Decimal("90"),
            payer_id="f-d",
            payer_user_id="u-d",
            group_id="g",
            splits=[
                Split(user_id="u-a", amount=Decimal("30")),
                Split(user_id="u-b", amount=Decimal("30")),
                Split(user_id="f-d", amount=Decimal("30")),
            ],
        )
        assert pairwise.expense_pair_effect(expense, A, B) == Decimal("0")


class TestTransactionPairEffect:
    def test_first_paid_second(self) -> None:
        tx = Transaction(from_id="u-a", to_id="f-b", amount=Decimal("40"))
        assert pairwise.transaction_pair_effect(tx, A, B) == Decimal("40")

    def test_second_paid_first(self) -> None:
        tx = Transaction(from_id="f-b", to_id="f-a", amount=Decimal("40"))
        assert pairwise.transaction_pair_effect(tx, A, B) == Decimal("-40")

    def test_unrelated(self) -> None:
        tx = Transaction(from_id="u-a", to_id="f-c", amount=Decimal("40"))
        assert pairwise.transaction_pair_effect(tx, A, B) == Decimal("0")


class TestPairwiseBalance:
    """Tests for replaying a ledger between two members."""

    def test_expenses_and_transactions(self) -> None:
        expenses = [
            _single("100", "u-a", {"u-a": "50", "u-b": "50"}),
            _single("30", "u-b", {"u-a": "30"}),
        ]
        txs = [Transaction(from_id="u-b", to_id="u-a", amount=Decimal("5"), group_id="g")]
        assert pairwise.pairwise_balance(expenses, txs, A, B) == Decimal("15.00")
        assert pairwise.pairwise_balance(expenses, txs, B, A) == Decimal("-15.00")

    def test_deleted_skipped(self) -> None:
        expense = _single("100", "u-a", {"u-a": "50", "u-b": "50"})
        expense.deleted = True
        assert pairwise.pairwise_balance([expense], [], A, B) == Decimal("0")

    def test_group_scope(self) -> None:
        """Test that None selects personal records and ANY_GROUP everything."""
        expenses = [
            _single("20", "u-a", {"u-b": "20"}, group_id="g"),
            _single("10", "u-a", {"u-b": "10"}, group_id=None),
        ]
        assert pairwise.pairwise_balance(expenses, [], A, B, group_id="g") == Decimal("20")
        assert pairwise.pairwise_balance(expenses, [], A, B, group_id=None) == Decimal("10")
        assert pairwise.pairwise_balance(expenses, [], A, B, group_id=ANY_GROUP) == Decimal("30")


class TestPairwiseDebts:
    def test_raw_ledger_edges(self, multi_payer: Expense) -> None:
        members = [
            GroupMember(id="f-a", user_id="u-a"),
            GroupMember(id="f-b", user_id="u-b"),
            GroupMember(id="f-c"),
        ]
        debts = pairwise.pairwise_debts(members, [multi_payer], [])
        assert [(d.from_id, d.to_id, d.amount) for d in debts] == [
            ("u-b", "u-a", Decimal("200.00")),
            ("f-c", "u-a", Decimal("400.00")),
        ]


class TestResolveRef:
    """Tests for recovering both ids of a person outside a group."""

    def test_from_linked_friend(self) -> None:
        friend = Friend(id="f-b", owner_id="u-a", linked_user_id="u-b")
        assert pairwise.resolve_ref("f-b", friends=[friend]) == B

    def test_from_payer_pair(self) -> None:
        expense = Expense(
            amount=Decimal("20"),
            payer_id="f-a",
            payer_user_id="u-a",
            splits=[Split(user_id="f-c", amount=Decimal("20"))],
        )
        assert pairwise.resolve_ref("f-a", [expense]) == A
        assert pairwise.resolve_ref("u-a", [expense]) == A

    def test_unknown_id(self) -> None:
        unlinked = Friend(id="f-c", owner_id="u-a")
        assert pairwise.resolve_ref("f-c", friends=[unlinked]) == C

    def test_prefers_pairing_the_ledger_uses(self) -> None:
        """Test that a friend record whose id appears in the expenses wins."""
        elsewhere = Friend(id="fr-other", owner_id="u-x", linked_user_id="u-b")
        local = Friend(id="f-b", owner_id="u-a", linked_user_id="u-b")
        expense = _single("10", "u-a", {"f-b": "10"}, group_id=None)
        assert pairwise.resolve_ref("u-b", [expense], [elsewhere, local]) == B


class TestCheckSettlement:
    """Tests for settle-up direction rules."""

    @pytest.fixture
    def a_owes_b(self) -> list[Expense]:
        """B paid 100 entirely on A's behalf."""
        return [_single("100", "u-b", {"u-a": "100"})]

    def test_reduces_debt(self, a_owes_b: list[Expense]) -> None:
        check = pairwise.check_settlement(a_owes_b, [], A, B, Decimal("50"))
        assert check.balance_before == Decimal("-100")
        assert check.balance_after == Decimal("-50")
        assert not check.overpayment

    def test_exact_settle(self, a_owes_b: list[Expense]) -> None:
        check = pairwise.check_settlement(a_owes_b, [], A, B, Decimal("100"))
        assert check.balance_after == Decimal("0")

    def test_overpayment_needs_acknowledgement(self, a_owes_b: list[Expense]) -> None:
        with pytest.raises(SettlementDirectionError, match="overpays by 50"):
            pairwise.check_settlement(a_owes_b, [], A, B, Decimal("150"))

    def test_acknowledged_overpayment_flips(self, a_owes_b: list[Expense]) -> None:
        check = pairwise.check_settlement(
            a_owes_b, [], A, B, Decimal("150"), acknowledge_overpayment=True
        )
        assert check.overpayment
        assert check.balance_after == Decimal("50")

    def test_wrong_direction(self, a_owes_b: list[Expense]) -> None:
        """Test that the creditor cannot pay the debtor without acknowledging it."""
        with pytest.raises(SettlementDirectionError, match="does not owe"):
            pairwise.check_settlement(a_owes_b, [], B, A, Decimal("10"))

    def test_non_positive_amount(self, a_owes_b: list[Expense]) -> None:
        with pytest.raises(SettlementDirectionError, match="positive"):
            pairwise.check_settlement(a_owes_b, [], A, B, Decimal("0"))
