"""Shared test fixtures for splitledger tests."""

from pathlib import Path

import pytest

from splitledger.commands import BalanceEngine
from splitledger.models import Friend, Group, GroupMember
from splitledger.state import LedgerStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep state and audit files out of the home directory."""
    monkeypatch.setenv("SPLITLEDGER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("SPLITLEDGER_AUDIT_PATH", str(tmp_path / "events.jsonl"))


@pytest.fixture
def alice() -> GroupMember:
    """Alice has an account; her friend record is linked."""
    return GroupMember(id="f-alice", user_id="u-alice", name="Alice")


@pytest.fixture
def bob() -> GroupMember:
    return GroupMember(id="f-bob", user_id="u-bob", name="Bob")


@pytest.fixture
def carol() -> GroupMember:
    """Carol has no account; she is only a friend record."""
    return GroupMember(id="f-carol", name="Carol")


@pytest.fixture
def members(alice: GroupMember, bob: GroupMember, carol: GroupMember) -> list[GroupMember]:
    return [alice, bob, carol]


@pytest.fixture
def sample_group(members: list[GroupMember]) -> Group:
    """Create a sample group for testing."""
    return Group(id="g-trip", name="Beach Trip", currency="USD", members=members)


@pytest.fixture
def store(tmp_path: Path) -> LedgerStore:
    """Create a LedgerStore with a temporary state directory."""
    return LedgerStore(tmp_path / "ledger")


@pytest.fixture
def audit_path(tmp_path: Path) -> Path:
    return tmp_path / "audit" / "events.jsonl"


@pytest.fixture
def engine(store: LedgerStore, audit_path: Path) -> BalanceEngine:
    return BalanceEngine(store, audit_path=audit_path)


@pytest.fixture
def trip(engine: BalanceEngine, members: list[GroupMember]) -> Group:
    """A persisted group of Alice, Bob and Carol with no expenses."""
    return engine.create_group("Beach Trip", members, currency="USD")


@pytest.fixture
def friends(store: LedgerStore) -> dict[str, Friend]:
    """Alice's friend records for Bob and Carol, and Bob's record for Alice."""
    records = {
        "alice_bob": Friend(id="fr-ab", owner_id="u-alice", name="Bob", linked_user_id="u-bob"),
        "alice_carol": Friend(id="f-carol", owner_id="u-alice", name="Carol"),
        "bob_alice": Friend(id="fr-ba", owner_id="u-bob", name="Alice", linked_user_id="u-alice"),
    }
    store.save_friends(list(records.values()))
    return records
