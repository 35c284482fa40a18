"""Command handlers - orchestrate store → ledger → caches.

Write commands (expenses, settlements, membership) persist a source record
and then rebuild the affected group's caches through ``reconcile``. Read
commands only look at caches, except the raw-ledger debts view.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any

from . import guards, templates
from .audit import EventStatus, log_event
from .breakdown import friend_group_amount, group_refs, personal_amount, rebuild_breakdown
from .cleanup import MembershipCleanupService
from .insights import group_spending_summary, spending_breakdown
from .ledger import (
    ExpenseValidationError,
    balance_of,
    compute_net_balances,
    is_settled,
    validate_expense,
    validate_transaction,
)
from .models import (
    Expense,
    Friend,
    Group,
    GroupDebtsView,
    GroupMember,
    GuardResult,
    MemberRef,
    MemberSpend,
    SpendingSummary,
    Transaction,
)
from .pairwise import SettlementDirectionError, check_settlement, pairwise_debts, resolve_ref
from .simplify import simplify_debts
from .state import LedgerStore, StoreError

logger = logging.getLogger(__name__)

PERSONAL_SCOPE = "personal"


def _participant_ids(expense: Expense) -> list[str]:
    ids = [expense.payer] + [s.user_id for s in expense.splits]
    return list(dict.fromkeys(ids))


def non_members(group: Group, raw_ids: list[str]) -> list[str]:
    """Raw ids that do not match any current member of the group."""
    return [i for i in raw_ids if group.member_for_id(i) is None]


class BalanceEngine:
    """
    Entry point for every balance-affecting command.

    Mutations of one group are serialized by a per-group lock held across
    "write record → read ledger → recompute → write caches". Cache writes are
    additionally checked against the group's version stamp.
    """

    def __init__(
        self,
        store: LedgerStore,
        audit_path: Path | None = None,
        audit_enabled: bool = True,
    ):
        """
        Initialize BalanceEngine.

        Args:
            store: Persistence for ledger records and caches
            audit_path: Command log location (default: SPLITLEDGER_AUDIT_PATH)
            audit_enabled: Set False to skip the command log entirely
        """
        self.store = store
        self.cleanup = MembershipCleanupService(store)
        self.audit_path = audit_path
        self.audit_enabled = audit_enabled

        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # === Plumbing ===

    def _lock(self, group_id: str | None) -> threading.RLock:
        key = group_id or PERSONAL_SCOPE
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    @contextmanager
    def _hold(self, *group_ids: str | None) -> Iterator[None]:
        """Hold several scopes' locks, always acquired in key order."""
        scopes = {group_id or PERSONAL_SCOPE: group_id for group_id in group_ids}
        with ExitStack() as stack:
            for key in sorted(scopes):
                stack.enter_context(self._lock(scopes[key]))
            yield

    @contextmanager
    def _command(
        self,
        command: str,
        group_id: str | None,
        also_lock: tuple[str | None, ...] = (),
        **detail: Any,
    ) -> Iterator[dict]:
        """Hold the group's lock and record the command's outcome in the audit log."""
        event: dict[str, Any] = {"status": "ok", "error_msg": None}
        try:
            with self._hold(group_id, *also_lock):
                yield event
        except (ExpenseValidationError, SettlementDirectionError) as e:
            self._log(command, group_id, "rejected", detail, str(e))
            raise
        except Exception as e:
            self._log(command, group_id, "error", detail, str(e))
            raise
        else:
            self._log(command, group_id, event["status"], detail, event["error_msg"])

    def _log(
        self,
        command: str,
        group_id: str | None,
        status: EventStatus,
        detail: dict[str, Any],
        error_msg: str | None,
    ) -> None:
        if not self.audit_enabled:
            return
        try:
            log_event(command, group_id, status, detail, error_msg, log_path=self.audit_path)
        except OSError:
            logger.exception("Failed to write audit entry for %s", command)

    def _live_group(self, group_id: str) -> Group:
        group = self.store.get_group(group_id)
        if group is None:
            raise ExpenseValidationError(f"Group {group_id} no longer exists")
        return group

    def _reload_expense(self, expense_id: str, group_id: str | None) -> Expense:
        """Re-read an expense under its scope's lock."""
        expense = self.store.require_expense(expense_id)
        if expense.group_id != group_id:
            raise StoreError(f"Expense {expense_id} moved to another group; retry")
        return expense

    def _require_members(self, group: Group, expense: Expense, message: str) -> None:
        missing = non_members(group, _participant_ids(expense))
        if missing:
            raise ExpenseValidationError(
                message.format(members=", ".join(missing), group=group.name or group.id)
            )

    # === Groups & membership ===

    def create_group(
        self,
        name: str,
        members: list[GroupMember],
        currency: str = "USD",
        simplify_debts_enabled: bool = False,
    ) -> Group:
        """Create a group with zeroed caches."""
        group = Group(
            name=name,
            currency=currency,
            members=members,
            simplify_debts_enabled=simplify_debts_enabled,
        )
        with self._command("create_group", group.id, name=name):
            self.store.save_group(group)
            return self.reconcile(group.id)

    def add_member(self, group_id: str, member: GroupMember) -> Group:
        with self._command("add_member", group_id, member_id=member.id):
            group = self.store.require_group(group_id)
            if not group.has_member(member.ref):
                group.members.append(member)
                group.former_members = [
                    m for m in group.former_members if not m.ref.matches(member.ref)
                ]
                self.store.save_group(group, expected_version=group.version)
            return self.reconcile(group_id)

    def set_simplify_debts(self, group_id: str, enabled: bool) -> Group:
        """Toggle simplification and rebuild the caches accordingly."""
        with self._command("set_simplify_debts", group_id, enabled=enabled):
            group = self.store.require_group(group_id)
            group.simplify_debts_enabled = enabled
            self.store.save_group(group, expected_version=group.version)
            return self.reconcile(group_id)

    def _exit_member(
        self, command: str, group_id: str, member: MemberRef, check: Any
    ) -> GuardResult:
        with self._command(command, group_id, member_id=member.key) as event:
            group = self.store.require_group(group_id)
            result: GuardResult = check(group, member)
            if not result.allowed:
                event["status"] = "rejected"
                event["error_msg"] = result.reason
                return result

            exited = group.find_member(member)
            assert exited is not None
            group.members = [m for m in group.members if m.id != exited.id]
            group.former_members = [
                m for m in group.former_members if not m.ref.matches(exited.ref)
            ] + [exited]
            self.store.save_group(group, expected_version=group.version)
            self.cleanup.on_member_exit(group_id, exited.ref)
            return result

    def leave_group(self, group_id: str, member: MemberRef) -> GuardResult:
        """Let a member leave once their own balance in the group is settled."""
        return self._exit_member("leave_group", group_id, member, guards.can_leave_group)

    def remove_member(self, group_id: str, member: MemberRef) -> GuardResult:
        """Remove a member once that member's balance in the group is settled."""
        return self._exit_member("remove_member", group_id, member, guards.can_remove_member)

    def delete_group(self, group_id: str) -> GuardResult:
        """Delete a group once every balance in it is settled. Ledger records are kept."""
        with self._command("delete_group", group_id) as event:
            group = self.store.require_group(group_id)
            result = guards.can_delete_group(group)
            if not result.allowed:
                event["status"] = "rejected"
                event["error_msg"] = result.reason
                return result

            self.store.delete_group(group_id)
            self.cleanup.on_group_deleted(group_id)
            return result

    # === Expenses ===

    def add_expense(self, expense: Expense) -> Expense:
        """
        Validate and record a new expense, then rebuild its scope's caches.

        Raises:
            ExpenseValidationError: If the expense is malformed or names
                someone outside its group
        """
        with self._command("add_expense", expense.group_id, expense_id=expense.id):
            validate_expense(expense)
            if expense.group_id is not None:
                group = self.store.require_group(expense.group_id)
                self._require_members(group, expense, "{members} not in group '{group}'")

            expense = expense.model_copy(update={"deleted": False})
            self.store.save_expense(expense)
            self.reconcile(expense.group_id)
            return expense

    def edit_expense(self, expense: Expense) -> Expense:
        """
        Replace an existing expense with an edited version (same id).

        Raises:
            ExpenseValidationError: If the edit is malformed or any stored
                participant has left the group
        """
        old_scope = self.store.require_expense(expense.id).group_id
        with self._command(
            "edit_expense", expense.group_id, also_lock=(old_scope,), expense_id=expense.id
        ):
            existing = self._reload_expense(expense.id, old_scope)
            if existing.deleted:
                raise ExpenseValidationError(f"Expense {expense.id} is deleted; restore it first")
            self._check_participants_present(existing)
            validate_expense(expense)
            if expense.group_id is not None:
                group = self._live_group(expense.group_id)
                self._require_members(group, expense, "{members} not in group '{group}'")

            expense = expense.model_copy(update={"deleted": False})
            self.store.save_expense(expense)
            self.reconcile(expense.group_id)
            if existing.group_id != expense.group_id:
                self.reconcile(existing.group_id)
            return expense

    def _check_participants_present(self, expense: Expense) -> None:
        if expense.group_id is None:
            return
        group = self._live_group(expense.group_id)
        self._require_members(
            group, expense, "Participants {members} have left group '{group}'"
        )

    def _set_expense_deleted(self, command: str, expense_id: str, deleted: bool) -> Expense:
        scope = self.store.require_expense(expense_id).group_id
        with self._command(command, scope, expense_id=expense_id):
            expense = self._reload_expense(expense_id, scope)
            self._check_participants_present(expense)
            if expense.deleted != deleted:
                expense.deleted = deleted
                self.store.save_expense(expense)
            self.reconcile(expense.group_id)
            return expense

    def delete_expense(self, expense_id: str) -> Expense:
        """Soft-delete an expense; it stays on file for restore."""
        return self._set_expense_deleted("delete_expense", expense_id, True)

    def restore_expense(self, expense_id: str) -> Expense:
        return self._set_expense_deleted("restore_expense", expense_id, False)

    # === Settlements ===

    def record_settlement(
        self, tx: Transaction, acknowledge_overpayment: bool = False
    ) -> Transaction:
        """
        Record a settle-up payment after checking its direction.

        Raises:
            ExpenseValidationError: If the amount or parties are invalid
            SettlementDirectionError: If the payment would grow a debt and the
                overpayment was not acknowledged
        """
        with self._command(
            "record_settlement", tx.group_id, transaction_id=tx.id, amount=str(tx.amount)
        ):
            validate_transaction(tx)
            if tx.group_id is not None:
                group = self.store.require_group(tx.group_id)
                missing = non_members(group, [tx.from_id, tx.to_id])
                if missing:
                    raise ExpenseValidationError(
                        f"{', '.join(missing)} not in group '{group.name or group.id}'"
                    )
                payer = group.member_for_id(tx.from_id).ref  # type: ignore[union-attr]
                payee = group.member_for_id(tx.to_id).ref  # type: ignore[union-attr]
                aliases = [m.ref for m in group.known_members]
                expenses = self.store.list_expenses(group_id=tx.group_id)
                transactions = self.store.list_transactions(group_id=tx.group_id)
            else:
                expenses = self.store.list_expenses(personal=True)
                transactions = self.store.list_transactions(personal=True)
                friends = self.store.list_friends()
                payer = resolve_ref(tx.from_id, expenses, friends)
                payee = resolve_ref(tx.to_id, expenses, friends)
                aliases = []

            check = check_settlement(
                expenses,
                transactions,
                payer,
                payee,
                tx.amount,
                group_id=tx.group_id,
                acknowledge_overpayment=acknowledge_overpayment,
                aliases=aliases,
            )
            if check.overpayment:
                logger.info(
                    "Acknowledged overpayment %s -> %s: balance %s becomes %s",
                    tx.from_id,
                    tx.to_id,
                    check.balance_before,
                    check.balance_after,
                )

            tx = tx.model_copy(update={"deleted": False})
            self.store.save_transaction(tx)
            self.reconcile(tx.group_id)
            return tx

    def _set_transaction_deleted(
        self, command: str, transaction_id: str, deleted: bool
    ) -> Transaction:
        scope = self.store.require_transaction(transaction_id).group_id
        with self._command(command, scope, transaction_id=transaction_id):
            tx = self.store.require_transaction(transaction_id)
            if tx.group_id is not None:
                self._live_group(tx.group_id)
            if tx.deleted != deleted:
                tx.deleted = deleted
                self.store.save_transaction(tx)
            self.reconcile(tx.group_id)
            return tx

    def delete_settlement(self, transaction_id: str) -> Transaction:
        return self._set_transaction_deleted("delete_settlement", transaction_id, True)

    def restore_settlement(self, transaction_id: str) -> Transaction:
        return self._set_transaction_deleted("restore_settlement", transaction_id, False)

    # === Recompute ===

    def reconcile(self, group_id: str | None) -> Group | None:
        """
        Rebuild every cache derived from one scope's ledger.

        This is the only path that writes ``user_balances``,
        ``simplified_debts`` and friend breakdowns from scratch. It is safe to
        run at any time and heals partial cleanups.

        Args:
            group_id: Group to rebuild, or None for the personal scope

        Returns:
            The updated group, or None for the personal scope
        """
        with self._lock(group_id):
            if group_id is None:
                self._reconcile_personal()
                return None

            group = self.store.require_group(group_id)
            expenses = self.store.list_expenses(group_id=group_id)
            transactions = self.store.list_transactions(group_id=group_id)

            balances = compute_net_balances(
                expenses, transactions, group.members, group.former_members
            )
            # Former members stay visible only while they still hold a balance
            balances = {
                key: value
                for key, value in balances.items()
                if group.member_for_id(key) is not None or not is_settled(value)
            }

            updates: dict[str, Any] = {
                "user_balances": balances,
                "simplified_debts": [],
                "simplification_available": True,
            }
            if group.simplify_debts_enabled:
                debts = simplify_debts(balances)
                if debts is None:
                    logger.warning("Group %s: falling back to raw ledger", group_id)
                updates["simplified_debts"] = debts or []
                updates["simplification_available"] = debts is not None

            saved = self.store.save_group(
                group.model_copy(update=updates), expected_version=group.version
            )
            self._refresh_group_breakdowns(saved, expenses, transactions)
            logger.debug("Reconciled group %s: %s", group_id, balances)
            return saved

    def _refresh_group_breakdowns(
        self, group: Group, expenses: list[Expense], transactions: list[Transaction]
    ) -> None:
        changed: list[Friend] = []
        for friend in self.store.list_friends():
            if friend.entry_for(group.id) is None and group_refs(friend, group) is None:
                continue
            amount = friend_group_amount(friend, group, expenses, transactions)
            updated = rebuild_breakdown(friend, group.id, amount)
            if updated != friend:
                changed.append(updated)
        if changed:
            self.store.save_friends(changed)

    def _reconcile_personal(self) -> None:
        expenses = self.store.list_expenses(personal=True)
        transactions = self.store.list_transactions(personal=True)
        changed: list[Friend] = []
        for friend in self.store.list_friends():
            amount = personal_amount(friend, expenses, transactions)
            updated = rebuild_breakdown(friend, None, amount)
            if updated != friend:
                changed.append(updated)
        if changed:
            self.store.save_friends(changed)

    # === Reads ===

    def group_balances(self, group_id: str) -> dict[str, Decimal]:
        """Cached net balances of a group."""
        return self.store.require_group(group_id).user_balances

    def member_balance(self, group_id: str, member: MemberRef) -> Decimal:
        return balance_of(self.group_balances(group_id), member)

    def group_debts(self, group_id: str) -> GroupDebtsView:
        """
        Who owes whom in a group.

        Uses the cached simplified debts when simplification is enabled and
        available; otherwise replays the raw ledger pairwise. A failed
        simplification adds a non-blocking warning.
        """
        group = self.store.require_group(group_id)
        if group.simplify_debts_enabled and group.simplification_available:
            return GroupDebtsView(group_id=group_id, simplified=True, debts=group.simplified_debts)

        debts = pairwise_debts(
            group.members,
            self.store.list_expenses(group_id=group_id),
            self.store.list_transactions(group_id=group_id),
            group_id=group_id,
            former_members=group.former_members,
        )
        warning = None
        if group.simplify_debts_enabled:
            warning = templates.SIMPLIFICATION_UNAVAILABLE
        return GroupDebtsView(group_id=group_id, simplified=False, debts=debts, warning=warning)

    def spending_summary(self, group_id: str) -> SpendingSummary:
        """Total spend of a group and each member's consumed share."""
        group = self.store.require_group(group_id)
        return group_spending_summary(
            self.store.list_expenses(group_id=group_id),
            group_id,
            group.members,
            group.former_members,
        )

    def group_spending(self, group_id: str) -> list[MemberSpend]:
        group = self.store.require_group(group_id)
        return spending_breakdown(self.spending_summary(group_id), group.known_members)
