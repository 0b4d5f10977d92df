"""SQLAlchemy 2.0 ORM models for the Crystal Custody engine.

Four tables:
    1. custody_records   — One row per crystal; the authoritative custody state.
    2. custody_events    — Append-only audit log of every successful operation.
    3. account_balances  — Principal balances backing the default transfer service.
    4. ledger_sequences  — Named counters; "crystal_id" allocates record ids.

Design decisions:
    - Sequential integer ids drawn from ledger_sequences, never reused.
    - BigInteger for energy amounts (integer units, no rounding).
    - version column wired to SQLAlchemy's version_id_col: every UPDATE is a
      compare-and-swap, so two writers can never both commit from the same
      read of a record.
    - CHECK constraints keep state values, amounts and deadlines sane at DB level.
    - custody_events is append-only: no UPDATE or DELETE at the application level.
    - Generic JSON / Uuid types with a JSONB variant on PostgreSQL, so the same
      models run against SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from crystal_custody.domain.enums import CrystalState

JSONType = JSON().with_variant(JSONB(), "postgresql")

_STATE_VALUES = ", ".join(f"'{s.value}'" for s in CrystalState)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. custody_records
# ---------------------------------------------------------------------------
class CustodyRecord(Base):
    """One crystal: energy held for a beneficiary on behalf of an originator."""

    __tablename__ = "custody_records"

    # --- Primary Key (allocated from ledger_sequences) ---
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
    )

    # --- Participants ---
    originator: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Principal that funded the crystal; changes only via stewardship transfer",
    )
    beneficiary: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Intended recipient; immutable",
    )

    # --- Value ---
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Energy currently held in custody for this crystal",
    )
    tag: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Caller-supplied wavelength; carried through events only",
    )
    phase_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    phase_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="amount / phase_count at creation",
    )

    # --- State (guarded by CrystalStateMachine) ---
    state: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=CrystalState.STABILIZING.value,
    )

    # --- Block-height timers ---
    genesis_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    decay_deadline: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # --- Lineage ---
    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("custody_records.id"),
        nullable=True,
        default=None,
        comment="Split crystal this fragment was materialized from",
    )

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps (audit only; transitions use block height) ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(f"state IN ({_STATE_VALUES})", name="ck_custody_valid_state"),
        CheckConstraint("amount >= 0", name="ck_custody_non_negative_amount"),
        CheckConstraint("tag > 0", name="ck_custody_positive_tag"),
        CheckConstraint("decay_deadline >= genesis_time", name="ck_custody_deadline_order"),
        CheckConstraint("originator <> beneficiary", name="ck_custody_distinct_parties"),
        Index("idx_custody_state", "state"),
        Index("idx_custody_originator", "originator"),
        Index("idx_custody_beneficiary", "beneficiary"),
        Index("idx_custody_parent", "parent_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CustodyRecord id={self.id} state={self.state} "
            f"amount={self.amount} deadline={self.decay_deadline}>"
        )


# ---------------------------------------------------------------------------
# 2. custody_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class CustodyEvent(Base):
    """Immutable audit record of one successful custody operation.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "custody_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    crystal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("custody_records.id", ondelete="CASCADE"),
        nullable=False,
    )

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., CRYSTAL_SPAWNED, ANOMALY_BALANCED)",
    )
    old_state: Mapped[str | None] = mapped_column(
        String(24),
        nullable=True,
        comment="Record state before this event (null for creation)",
    )
    new_state: Mapped[str] = mapped_column(String(24), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Principal whose call produced this event",
    )
    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Operation parameters: amounts, ratios, overlay settings",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_event_crystal", "crystal_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_block_height", "block_height"),
    )

    def __repr__(self) -> str:
        return (
            f"<CustodyEvent crystal={self.crystal_id} type={self.event_type} "
            f"{self.old_state}->{self.new_state}>"
        )


# ---------------------------------------------------------------------------
# 3. account_balances
# ---------------------------------------------------------------------------
class AccountBalance(Base):
    """Energy held by one principal, including the custody account itself."""

    __tablename__ = "account_balances"

    principal: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<AccountBalance {self.principal}={self.balance}>"


# ---------------------------------------------------------------------------
# 4. ledger_sequences
# ---------------------------------------------------------------------------
class LedgerSequence(Base):
    """A named monotonically increasing counter."""

    __tablename__ = "ledger_sequences"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(CustodyRecord, "before_update", _set_updated_at)
event.listen(AccountBalance, "before_update", _set_updated_at)
