"""Tests for splitledger CLI."""

from decimal import Decimal
from pathlib import Path

import pytest
from click.testing import CliRunner

from splitledger.cli import cli
from splitledger.commands import BalanceEngine
from splitledger.models import Expense, Group, GroupMember, Split
from splitledger.state import LedgerStore


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_state(tmp_path: Path) -> str:
    """Create a temporary state directory path."""
    return str(tmp_path / "splitledger-state")


@pytest.fixture
def seeded(temp_state: str, members: list[GroupMember]) -> Group:
    """A group where Bob owes Alice 30."""
    engine = BalanceEngine(LedgerStore(temp_state), audit_enabled=False)
    group = engine.create_group("Beach Trip", members)
    engine.add_expense(
        Expense(
            amount=Decimal("30"),
            payer_id="f-alice",
            group_id=group.id,
            splits=[Split(user_id="u-bob", amount=Decimal("30"))],
        )
    )
    return group


class TestCLI:
    """Tests for CLI commands."""

    def test_version(self, runner: CliRunner) -> None:
        """Test --version flag."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "debt simplification" in result.output


class TestGroupsCommand:
    def test_empty(self, runner: CliRunner, temp_state: str) -> None:
        result = runner.invoke(cli, ["groups", "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "No groups found." in result.output

    def test_lists_groups(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["groups", "--state-dir", temp_state])
        assert result.exit_code == 0
        assert f"Beach Trip [{seeded.id}]" in result.output
        assert "3 members, 1 expenses, simplify off" in result.output


class TestBalancesCommand:
    """Tests for the balances and debts commands."""

    def test_balances(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["balances", seeded.id, "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "Beach Trip Balances" in result.output
        assert "Alice is owed $30.00" in result.output
        assert "Bob owes $30.00" in result.output
        assert "Carol is settled up" in result.output

    def test_debts(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["debts", seeded.id, "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "• Bob → Alice: $30.00" in result.output

    def test_spending(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["spending", seeded.id, "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "Beach Trip Spending: $30.00" in result.output
        assert "• Bob: $30.00 (100.00%)" in result.output
        assert "• Alice: $0.00 (0.00%)" in result.output

    def test_missing_group(self, runner: CliRunner, temp_state: str) -> None:
        result = runner.invoke(cli, ["balances", "nope", "--state-dir", temp_state])
        assert result.exit_code == 1
        assert "Group 'nope' not found." in result.output

    def test_state_dir_from_env(
        self, runner: CliRunner, temp_state: str, seeded: Group, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SPLITLEDGER_STATE_DIR", temp_state)
        result = runner.invoke(cli, ["balances", seeded.id])
        assert result.exit_code == 0
        assert "Alice is owed $30.00" in result.output


class TestReconcileCommand:
    def test_repairs_cache(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        store = LedgerStore(temp_state)
        group = store.require_group(seeded.id)
        group.user_balances = {}
        store.save_group(group)

        result = runner.invoke(cli, ["reconcile", seeded.id, "--state-dir", temp_state])
        assert result.exit_code == 0
        assert f"Reconciled Beach Trip [{seeded.id}]" in result.output
        assert LedgerStore(temp_state).require_group(seeded.id).user_balances["u-alice"] == Decimal(
            "30"
        )

    def test_all_groups(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["reconcile", "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "Reconciled Beach Trip" in result.output

    def test_personal(self, runner: CliRunner, temp_state: str) -> None:
        result = runner.invoke(cli, ["reconcile", "--personal", "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "Reconciled personal balances." in result.output


class TestCheckCommand:
    def test_blocked(self, runner: CliRunner, temp_state: str, seeded: Group) -> None:
        result = runner.invoke(cli, ["check", seeded.id, "--state-dir", temp_state])
        assert result.exit_code == 1
        assert "outstanding balances" in result.output
        assert "Bob owes $30.00" in result.output

    def test_settled(
        self, runner: CliRunner, temp_state: str, members: list[GroupMember]
    ) -> None:
        engine = BalanceEngine(LedgerStore(temp_state), audit_enabled=False)
        group = engine.create_group("Empty", members)
        result = runner.invoke(cli, ["check", group.id, "--state-dir", temp_state])
        assert result.exit_code == 0
        assert "can be deleted" in result.output
