"""
Core Data Models for Split Ledger

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be the single shape the storage layer converts rows into
4. Make illegal split targets unrepresentable

DESIGN DECISION: Money is always Decimal with at most 4 fractional digits,
matching the DECIMAL(19, 4) columns of the ledger. Floats never reach a balance.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    model_validator,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every created_on column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Amounts owed/paid on a split row can never be negative
Amount = Annotated[Decimal, Field(ge=0, max_digits=19, decimal_places=4)]

# Balances and balance seeds are signed
SignedAmount = Annotated[Decimal, Field(max_digits=19, decimal_places=4)]

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]

TagText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]

EntityId = Annotated[int, Field(gt=0)]


# =============================================================================
# ENUMS
# =============================================================================

class Settlement(str, Enum):
    """
    Where a party stands on one split row.

    Derived from amount_paid - amount_to_pay.
    """
    SETTLED = "settled"   # paid exactly their share
    LOANED = "loaned"     # paid more than their share, others owe them
    OWING = "owing"       # paid less than their share


# =============================================================================
# SPLIT TARGET
# =============================================================================

class RegisteredAccount(BaseModel):
    """A split row attributed to an account registered on the platform."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["account"] = "account"
    account_id: EntityId


class ExternalPayee(BaseModel):
    """
    A split row attributed to someone who is not on the platform.

    Also what a row becomes when its account is deleted: the account's
    name is kept as a snapshot so the ledger stays readable.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    kind: Literal["external"] = "external"
    name: Name


SplitTarget = Annotated[
    Union[RegisteredAccount, ExternalPayee],
    Field(discriminator="kind"),
]


def split_target(
    account_id: Optional[int],
    account_name: Optional[str],
) -> Union[RegisteredAccount, ExternalPayee]:
    """
    Build a split target from the flat (account_id, account_name) pair.

    Exactly one of the two must be set.
    """
    if account_id is None and account_name is None:
        raise ValueError("Either account_id or account_name must be provided")
    if account_id is not None and account_name is not None:
        raise ValueError("Both account_id and account_name cannot be provided for the same amount")
    if account_id is not None:
        return RegisteredAccount(account_id=account_id)
    return ExternalPayee(name=account_name)


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    A balance-bearing account owned by exactly one user.

    CRITICAL: balance is a cache derived from the ledger rows.
    Only the balance engine writes it after creation.
    """

    id: int
    user_id: int
    name: str
    balance: Decimal
    created_on: datetime


class NewAccount(BaseModel):
    """Payload for creating an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Name
    initial_balance: SignedAmount = Field(
        default=Decimal("0"),
        description="Informational seed; not backed by any ledger row"
    )


class EditAccount(BaseModel):
    """Payload for renaming an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Name


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionAmount(BaseModel):
    """
    One party's stake in a transaction (a split-amount row).

    amount_to_pay is their share of the bill, amount_paid is what they
    actually put in.
    """

    id: int
    transaction_id: int
    target: SplitTarget
    amount_to_pay: Decimal
    amount_paid: Decimal
    created_on: datetime

    @property
    def account_id(self) -> Optional[int]:
        if isinstance(self.target, RegisteredAccount):
            return self.target.account_id
        return None

    @property
    def account_name(self) -> Optional[str]:
        if isinstance(self.target, ExternalPayee):
            return self.target.name
        return None

    @property
    def outstanding(self) -> Decimal:
        """Positive when this party is owed money, negative when they owe."""
        return self.amount_paid - self.amount_to_pay

    @property
    def settlement(self) -> Settlement:
        if self.outstanding > 0:
            return Settlement.LOANED
        if self.outstanding < 0:
            return Settlement.OWING
        return Settlement.SETTLED


class TransactionTag(BaseModel):
    """A free-text tag on a transaction."""

    id: int
    transaction_id: int
    tag: str
    created_on: datetime


class Transaction(BaseModel):
    """
    One logical financial event with its split rows and tags.

    A transaction has no owner column: whoever owns an account on one
    of its rows can see it.
    """

    id: int
    category: str
    is_income: bool
    include_in_reports: bool
    description: Optional[str] = None
    notes: Optional[str] = None
    created_on: datetime
    amounts: list[TransactionAmount] = Field(default_factory=list)
    tags: list[TransactionTag] = Field(default_factory=list)

    @property
    def total_to_pay(self) -> Decimal:
        return sum((a.amount_to_pay for a in self.amounts), Decimal("0"))

    @property
    def total_paid(self) -> Decimal:
        return sum((a.amount_paid for a in self.amounts), Decimal("0"))

    @property
    def account_ids(self) -> set[int]:
        """Registered accounts referenced by this transaction."""
        return {a.account_id for a in self.amounts if a.account_id is not None}


class NewTransactionAmount(BaseModel):
    """A split row in a create request."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[EntityId] = None
    account_name: Optional[Name] = None
    amount_to_pay: Amount
    amount_paid: Amount

    @model_validator(mode='after')
    def validate_target(self) -> 'NewTransactionAmount':
        """Exactly one of account_id / account_name."""
        split_target(self.account_id, self.account_name)
        return self

    @property
    def target(self) -> Union[RegisteredAccount, ExternalPayee]:
        return split_target(self.account_id, self.account_name)


class NewTransaction(BaseModel):
    """Payload for creating a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category: Name
    is_income: bool = False
    include_in_reports: bool = True
    description: Optional[Name] = None
    notes: Optional[str] = Field(default=None, min_length=1)
    amounts: list[NewTransactionAmount] = Field(..., min_length=1)
    tags: list[TagText] = Field(default_factory=list)


class EditTransactionAmount(BaseModel):
    """
    A split row in an update request.

    Without an id it is a new row; with an id it patches that row and
    only the supplied fields change.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[EntityId] = None
    account_id: Optional[EntityId] = None
    account_name: Optional[Name] = None
    amount_to_pay: Optional[Amount] = None
    amount_paid: Optional[Amount] = None

    @model_validator(mode='after')
    def validate_target(self) -> 'EditTransactionAmount':
        if self.account_id is not None and self.account_name is not None:
            raise ValueError("Both account_id and account_name cannot be provided for the same amount")
        return self

    @property
    def target(self) -> Optional[Union[RegisteredAccount, ExternalPayee]]:
        """The new target, or None when this entry does not move the row."""
        if self.account_id is None and self.account_name is None:
            return None
        return split_target(self.account_id, self.account_name)


# Header columns an update may touch
HEADER_FIELDS = ("category", "is_income", "include_in_reports", "description", "notes")


class EditTransaction(BaseModel):
    """
    Payload for updating a transaction.

    Header fields are a partial update. amounts, when present, is the
    complete desired set of split rows.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    category: Optional[Name] = None
    is_income: Optional[bool] = None
    include_in_reports: Optional[bool] = None
    description: Optional[Name] = None
    notes: Optional[str] = None
    amounts: Optional[list[EditTransactionAmount]] = None

    @model_validator(mode='after')
    def validate_fields(self) -> 'EditTransaction':
        for name in ("category", "is_income", "include_in_reports"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")

        if self.amounts:
            ids = [a.id for a in self.amounts if a.id is not None]
            if len(ids) != len(set(ids)):
                raise ValueError("The same amount id cannot appear twice")
        return self

    def header_updates(self) -> dict:
        """Header columns the caller actually supplied."""
        updates = {
            name: getattr(self, name)
            for name in HEADER_FIELDS
            if name in self.model_fields_set
        }
        # An empty notes string clears the notes
        if "notes" in updates and not updates["notes"]:
            updates["notes"] = None
        return updates

    @property
    def drains_amounts(self) -> bool:
        """True when the caller asked for zero split rows."""
        return self.amounts is not None and len(self.amounts) == 0


class NewTag(BaseModel):
    """Payload for tagging a transaction."""

    tag: TagText


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionFilters(BaseModel):
    """
    Filters for listing a user's transactions.

    Every supplied filter must match. Date bounds are inclusive.
    """

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[Name] = None
    tags: list[TagText] = Field(
        default_factory=list,
        description="Transaction must carry all of these tags"
    )
    account_id: Optional[EntityId] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'TransactionFilters':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class TransactionPage(BaseModel):
    """One page of a transaction listing."""

    page: int
    limit: int
    total: int = Field(ge=0, description="Matching transactions across all pages")
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unbalanced')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
