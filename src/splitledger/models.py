"""Pydantic models for the splitledger balance engine."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def _new_id() -> str:
    return uuid4().hex


def coerce_decimal(v: Any) -> Decimal:
    """Coerce a raw amount to Decimal, routing floats through str."""
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float):
        return Decimal(str(v))
    return Decimal(v)


class MemberRef(BaseModel):
    """
    A person as seen by the ledger.

    A member is known by their friend-record id (``local_id``) and, once they
    have an account, by their auth user id (``user_id``). Records may name a
    member by either one, so every lookup goes through ``matches``.
    """

    model_config = ConfigDict(frozen=True)

    local_id: str
    user_id: str | None = None

    @property
    def ids(self) -> tuple[str, ...]:
        """All non-empty identities of this member."""
        return tuple(i for i in (self.local_id, self.user_id) if i)

    @property
    def key(self) -> str:
        """Canonical cache key: the auth id when linked, else the friend-record id."""
        return self.user_id or self.local_id

    def matches_id(self, raw_id: str | None) -> bool:
        """Check whether a raw identifier names this member."""
        if not raw_id:
            return False
        return raw_id in self.ids

    def matches(self, other: "MemberRef") -> bool:
        return matches(self, other)


def matches(a: MemberRef, b: MemberRef) -> bool:
    """True when any identity of ``a`` equals any identity of ``b``."""
    return any(b.matches_id(i) for i in a.ids)


class GroupMember(BaseModel):
    """A friend record participating in a group."""

    id: str
    user_id: str | None = None
    name: str = ""
    avatar: str = ""

    @property
    def ref(self) -> MemberRef:
        return MemberRef(local_id=self.id, user_id=self.user_id)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Split(BaseModel):
    """A participant's owed share of an expense and what they paid toward it."""

    user_id: str
    amount: Decimal
    paid_amount: Decimal = Decimal("0")

    @field_validator("amount", "paid_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("amount", "paid_amount")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)


class Expense(BaseModel):
    """An expense, owned by a group or personal when ``group_id`` is None."""

    id: str = Field(default_factory=_new_id)
    description: str = ""
    amount: Decimal
    date: datetime = Field(default_factory=datetime.now)
    payer_id: str
    payer_user_id: str | None = None
    group_id: str | None = None
    splits: list[Split]
    deleted: bool = False

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)

    @property
    def payer(self) -> str:
        """Identity credited as payer (auth id preferred over friend id)."""
        return self.payer_user_id or self.payer_id

    @property
    def payer_ref(self) -> MemberRef:
        """The payer under both ids this expense records for them."""
        return MemberRef(local_id=self.payer_id, user_id=self.payer_user_id)

    @property
    def is_multi_payer(self) -> bool:
        return sum(1 for s in self.splits if s.paid_amount > 0) > 1

    def involves(self, member: MemberRef) -> bool:
        """True if the member paid or holds a split."""
        if member.matches_id(self.payer_id) or member.matches_id(self.payer_user_id):
            return True
        return any(member.matches_id(s.user_id) for s in self.splits)


class Transaction(BaseModel):
    """A settlement: a recorded payment from one member to another."""

    id: str = Field(default_factory=_new_id)
    from_id: str
    to_id: str
    amount: Decimal
    date: datetime = Field(default_factory=datetime.now)
    group_id: str | None = None
    description: str = ""
    deleted: bool = False

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)

    def involves(self, member: MemberRef) -> bool:
        return member.matches_id(self.from_id) or member.matches_id(self.to_id)


class Debt(BaseModel):
    """A directed payment suggestion: ``from_id`` pays ``to_id``."""

    from_id: str
    to_id: str
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)


class MemberBalance(BaseModel):
    """Net position of one member (positive = owed money)."""

    member_id: str
    balance: Decimal

    @field_validator("balance", mode="before")
    @classmethod
    def coerce_balance(cls, v: Any) -> Decimal:
        return coerce_decimal(v)


class Group(BaseModel):
    """A group with its members and derived balance caches."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    currency: str = "USD"
    members: list[GroupMember] = Field(default_factory=list)
    # Members who left or were removed; kept so their ledger ids still fold together
    former_members: list[GroupMember] = Field(default_factory=list)
    simplify_debts_enabled: bool = False

    # Derived caches, rebuilt from the ledger on every reconcile
    user_balances: dict[str, Decimal] = Field(default_factory=dict)
    simplified_debts: list[Debt] = Field(default_factory=list)
    simplification_available: bool = True
    version: int = 0

    @field_validator("user_balances", mode="before")
    @classmethod
    def coerce_user_balances(cls, v: Any) -> dict[str, Decimal]:
        if v is None:
            return {}
        return {k: coerce_decimal(val) for k, val in v.items()}

    @field_serializer("user_balances")
    def serialize_user_balances(self, v: dict[str, Decimal]) -> dict[str, str]:
        return {k: str(val) for k, val in v.items()}

    def find_member(self, member: MemberRef) -> GroupMember | None:
        """Find the group member matching a reference."""
        for m in self.members:
            if m.ref.matches(member):
                return m
        return None

    def member_for_id(self, raw_id: str) -> GroupMember | None:
        for m in self.members:
            if m.ref.matches_id(raw_id):
                return m
        return None

    def has_member(self, member: MemberRef) -> bool:
        return self.find_member(member) is not None

    @property
    def known_members(self) -> list[GroupMember]:
        """Current members followed by former members."""
        return self.members + self.former_members


class BreakdownEntry(BaseModel):
    """One bucket of a friend balance. ``group_id`` None is the personal bucket."""

    group_id: str | None = None
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)


class Friend(BaseModel):
    """
    A friend record owned by one account holder.

    ``balance`` is positive when the friend owes the owner. Both ``balance``
    and ``group_breakdown`` are derived caches.
    """

    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str = ""
    avatar: str = ""
    linked_user_id: str | None = None
    balance: Decimal = Decimal("0")
    group_breakdown: list[BreakdownEntry] = Field(default_factory=list)

    @field_validator("balance", mode="before")
    @classmethod
    def coerce_balance(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_serializer("balance")
    def serialize_balance(self, v: Decimal) -> str:
        return str(v)

    @property
    def ref(self) -> MemberRef:
        return MemberRef(local_id=self.id, user_id=self.linked_user_id)

    @property
    def owner_ref(self) -> MemberRef:
        return MemberRef(local_id=self.owner_id, user_id=self.owner_id)

    def involves(self, member: MemberRef) -> bool:
        """True if the member is this record's owner or the friend it describes."""
        return member.matches_id(self.owner_id) or self.ref.matches(member)

    def entry_for(self, group_id: str | None) -> BreakdownEntry | None:
        for entry in self.group_breakdown:
            if entry.group_id == group_id:
                return entry
        return None


class GuardResult(BaseModel):
    """Outcome of a consistency check before a destructive operation."""

    allowed: bool
    operation: str
    reason: str = ""
    outstanding: dict[str, Decimal] = Field(default_factory=dict)

    @field_serializer("outstanding")
    def serialize_outstanding(self, v: dict[str, Decimal]) -> dict[str, str]:
        return {k: str(val) for k, val in v.items()}


class SettlementCheck(BaseModel):
    """Pairwise position of a payer relative to a payee around a settle-up."""

    balance_before: Decimal
    balance_after: Decimal
    overpayment: bool = False


class GroupDebtsView(BaseModel):
    """Who-owes-whom for display: simplified edges or the raw pairwise ledger."""

    group_id: str
    simplified: bool
    debts: list[Debt] = Field(default_factory=list)
    warning: str | None = None


class SpendingSummary(BaseModel):
    """Total group spend and each member's consumed share."""

    group_id: str
    total_spend: Decimal = Decimal("0")
    per_member: dict[str, Decimal] = Field(default_factory=dict)

    @field_serializer("total_spend")
    def serialize_total_spend(self, v: Decimal) -> str:
        return str(v)

    @field_serializer("per_member")
    def serialize_per_member(self, v: dict[str, Decimal]) -> dict[str, str]:
        return {k: str(val) for k, val in v.items()}


class MemberSpend(BaseModel):
    member_id: str
    name: str = ""
    avatar: str = ""
    spend: Decimal
    percentage: Decimal = Decimal("0")

    @field_serializer("spend", "percentage")
    def serialize_amount(self, v: Decimal) -> str:
        return str(v)
