"""Ledger state management - load/save groups, ledger records and friend caches."""

import json
import logging
import os
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .models import Expense, Friend, Group, MemberRef, Transaction

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
LedgerRecord = TypeVar("LedgerRecord", Expense, Transaction)

DEFAULT_STATE_DIR = Path.home() / ".splitledger"


class StoreError(Exception):
    """State files could not be read or written."""

    pass


class NotFoundError(StoreError):
    """A requested record does not exist."""

    pass


class ConcurrentUpdateError(StoreError):
    """A cache write was based on a stale version of the group."""

    def __init__(self, group_id: str, expected: int, actual: int):
        self.group_id = group_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Group {group_id} changed while recomputing (expected version {expected}, "
            f"found {actual})"
        )


def get_state_dir() -> Path:
    """Get the state directory, respecting SPLITLEDGER_STATE_DIR env var."""
    env_dir = os.environ.get("SPLITLEDGER_STATE_DIR")
    if env_dir:
        return Path(env_dir)
    return DEFAULT_STATE_DIR


class LedgerStore:
    """
    Persists groups, expenses, settlements and friend records as JSON.

    Expenses and transactions are the source of truth and are only appended
    or soft-deleted. Groups and friends carry derived caches that the engine
    rebuilds from them.

    State lives in ``groups.json``, ``expenses.json``, ``transactions.json``
    and ``friends.json`` under the state directory.
    """

    def __init__(self, state_dir: str | Path | None = None):
        """
        Initialize LedgerStore.

        Args:
            state_dir: Directory for state files (default: SPLITLEDGER_STATE_DIR
                or ~/.splitledger)
        """
        if state_dir is None:
            state_dir = get_state_dir()
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        self.groups_file = self.state_dir / "groups.json"
        self.expenses_file = self.state_dir / "expenses.json"
        self.transactions_file = self.state_dir / "transactions.json"
        self.friends_file = self.state_dir / "friends.json"

        self._groups: dict[str, Group] = self._load_file(self.groups_file, Group)
        self._expenses: dict[str, Expense] = self._load_file(self.expenses_file, Expense)
        self._transactions: dict[str, Transaction] = self._load_file(
            self.transactions_file, Transaction
        )
        self._friends: dict[str, Friend] = self._load_file(self.friends_file, Friend)

    def _load_file(self, path: Path, model: type[ModelT]) -> dict[str, ModelT]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return {key: model.model_validate(item) for key, item in data.items()}
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load %s: %s", path, e)
            raise StoreError(f"Corrupt state file {path}: {e}") from e

    def _save_file(self, path: Path, records: dict[str, ModelT]) -> None:
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(
                {key: record.model_dump(mode="json") for key, record in records.items()},
                f,
                indent=2,
                default=str,
            )
        tmp.replace(path)

    # === Groups ===

    def get_group(self, group_id: str) -> Group | None:
        """Get a group by id."""
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    def require_group(self, group_id: str) -> Group:
        group = self.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    def list_groups(self) -> list[Group]:
        return [g.model_copy(deep=True) for g in self._groups.values()]

    def save_group(self, group: Group, expected_version: int | None = None) -> Group:
        """
        Save/update a group.

        When ``expected_version`` is given, the write is rejected unless the
        stored group still has that version. Every save bumps the version.

        Raises:
            ConcurrentUpdateError: If the stored version moved on
        """
        current = self._groups.get(group.id)
        if expected_version is not None:
            actual = current.version if current else 0
            if actual != expected_version:
                raise ConcurrentUpdateError(group.id, expected_version, actual)

        saved = group.model_copy(
            update={"version": (current.version if current else 0) + 1}, deep=True
        )
        self._groups[group.id] = saved
        self._save_file(self.groups_file, self._groups)
        return saved.model_copy(deep=True)

    def delete_group(self, group_id: str) -> bool:
        """Delete a group. Its ledger records are kept. Returns True if deleted."""
        if group_id in self._groups:
            del self._groups[group_id]
            self._save_file(self.groups_file, self._groups)
            return True
        return False

    # === Expenses ===

    def get_expense(self, expense_id: str) -> Expense | None:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    def require_expense(self, expense_id: str) -> Expense:
        expense = self.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return expense

    def save_expense(self, expense: Expense) -> Expense:
        self._expenses[expense.id] = expense.model_copy(deep=True)
        self._save_file(self.expenses_file, self._expenses)
        return expense

    def list_expenses(
        self,
        group_id: str | None = None,
        personal: bool = False,
        include_deleted: bool = False,
    ) -> list[Expense]:
        """
        List expenses of one group, personal expenses, or (by default) all.

        Args:
            group_id: Only expenses of this group
            personal: Only expenses with no group
            include_deleted: Include soft-deleted expenses
        """
        return self._filter(self._expenses, group_id, personal, include_deleted)

    # === Transactions ===

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    def require_transaction(self, transaction_id: str) -> Transaction:
        tx = self.get_transaction(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return tx

    def save_transaction(self, tx: Transaction) -> Transaction:
        self._transactions[tx.id] = tx.model_copy(deep=True)
        self._save_file(self.transactions_file, self._transactions)
        return tx

    def list_transactions(
        self,
        group_id: str | None = None,
        personal: bool = False,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        """List settlements, filtered the same way as ``list_expenses``."""
        return self._filter(self._transactions, group_id, personal, include_deleted)

    @staticmethod
    def _filter(
        records: dict[str, LedgerRecord],
        group_id: str | None,
        personal: bool,
        include_deleted: bool,
    ) -> list[LedgerRecord]:
        result = []
        for record in records.values():
            if record.deleted and not include_deleted:
                continue
            if personal and record.group_id is not None:
                continue
            if not personal and group_id is not None and record.group_id != group_id:
                continue
            result.append(record.model_copy(deep=True))
        return result

    # === Friends ===

    def get_friend(self, friend_id: str) -> Friend | None:
        friend = self._friends.get(friend_id)
        return friend.model_copy(deep=True) if friend else None

    def save_friend(self, friend: Friend) -> Friend:
        self._friends[friend.id] = friend.model_copy(deep=True)
        self._save_file(self.friends_file, self._friends)
        return friend

    def save_friends(self, friends: list[Friend]) -> None:
        """Save several friend records with a single write."""
        for friend in friends:
            self._friends[friend.id] = friend.model_copy(deep=True)
        self._save_file(self.friends_file, self._friends)

    def list_friends(self) -> list[Friend]:
        return [f.model_copy(deep=True) for f in self._friends.values()]

    def friends_involving(self, member: MemberRef) -> list[Friend]:
        """Friend records owned by the member or describing the member."""
        return [f.model_copy(deep=True) for f in self._friends.values() if f.involves(member)]
