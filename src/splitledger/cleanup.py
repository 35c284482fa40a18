"""Best-effort cache cleanup after a member leaves or a group is deleted.

Cleanup patches derived caches in place instead of rebuilding them. Any
failure is logged and swallowed so the exit itself still succeeds; the next
``BalanceEngine.reconcile`` of the group rebuilds the same caches from the
ledger and heals whatever was left behind.
"""

import logging
from decimal import Decimal

from .breakdown import drop_group
from .ledger import BALANCE_TOLERANCE
from .models import Debt, MemberRef
from .simplify import simplify_debts
from .state import LedgerStore

logger = logging.getLogger(__name__)


def simplify_remaining(balances: dict[str, Decimal]) -> list[Debt] | None:
    """Simplify the balances that are not within tolerance of zero."""
    return simplify_debts({k: v for k, v in balances.items() if abs(v) > BALANCE_TOLERANCE})


class MembershipCleanupService:
    """Strips an exited member out of group and friend caches."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def on_member_exit(self, group_id: str, exited: MemberRef) -> bool:
        """
        Remove an exited member from the group's cached balances.

        Steps:
        1. Drop the member's entry from ``user_balances``
        2. Recompute ``simplified_debts`` if simplification is enabled
        3. Drop the group's bucket from every friend record involving the
           member and recompute each record's balance from what remains

        Returns:
            True if every step completed, False if cleanup gave up (logged)
        """
        try:
            logger.info("Cleaning up after %s left group %s", exited.key, group_id)
            group = self.store.get_group(group_id)
            if group is None:
                logger.info("Group %s not found, skipping cleanup", group_id)
                return True

            removed = {k: v for k, v in group.user_balances.items() if exited.matches_id(k)}
            balances = {
                k: v for k, v in group.user_balances.items() if not exited.matches_id(k)
            }
            logger.debug("Removed %s from user_balances (previous: %s)", exited.key, removed)

            updates: dict[str, object] = {"user_balances": balances}
            if group.simplify_debts_enabled:
                debts = simplify_remaining(balances)
                updates["simplified_debts"] = debts or []
                updates["simplification_available"] = debts is not None
                logger.debug(
                    "Recomputed simplified debts for %s: %s",
                    group_id,
                    "unavailable" if debts is None else f"{len(debts)} edges",
                )
            self.store.save_group(group.model_copy(update=updates), expected_version=group.version)

            affected = [
                drop_group(friend, group_id)
                for friend in self.store.friends_involving(exited)
                if friend.entry_for(group_id) is not None
            ]
            if affected:
                logger.debug("Updating %d friend records", len(affected))
                self.store.save_friends(affected)

            logger.info("Cleanup complete for %s in group %s", exited.key, group_id)
            return True
        except Exception:
            # Next reconcile of the group rebuilds these caches
            logger.exception("Cleanup failed after %s left group %s", exited.key, group_id)
            return False

    def on_group_deleted(self, group_id: str) -> bool:
        """Drop a deleted group's bucket from every friend breakdown."""
        try:
            affected = [
                drop_group(friend, group_id)
                for friend in self.store.list_friends()
                if friend.entry_for(group_id) is not None
            ]
            if affected:
                self.store.save_friends(affected)
            logger.info("Removed group %s from %d friend breakdowns", group_id, len(affected))
            return True
        except Exception:
            logger.exception("Cleanup failed after group %s was deleted", group_id)
            return False
