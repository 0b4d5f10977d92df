"""Pydantic schemas for the Custody API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to keep the API and database layers apart.
Range checks on protocol quantities stay in the service, so an out-of-range
value yields the same domain error over HTTP as it does in-process. The
fields only cap integers at the 64-bit column limit.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field

from crystal_custody.domain.rules import MAX_STORED_INT

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class SpawnCrystalRequest(BaseModel):
    """Request body for funding a new crystal from the caller's balance."""

    beneficiary: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Principal that receives the energy on finalize",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    amount: int = Field(
        ...,
        le=MAX_STORED_INT,
        description="Energy to place in custody (integer units)",
        examples=[1000],
    )
    tag: int = Field(
        ...,
        le=MAX_STORED_INT,
        description="Wavelength tag carried through events",
        examples=[7],
    )
    phase_count: int | None = Field(
        default=None,
        le=MAX_STORED_INT,
        description="When set, create a phased crystal whose amount divides exactly into this many phases",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional idempotency key to prevent duplicate crystal creation",
    )


class ExtendStabilityRequest(BaseModel):
    extension: int = Field(
        ..., le=MAX_STORED_INT, description="Ticks to add to the decay deadline (1..1440)"
    )


class ReportAnomalyRequest(BaseModel):
    reason: str = Field(default="", max_length=2000)


class BalanceAnomalyRequest(BaseModel):
    """Supervisor's settlement: the originator's share in percent."""

    ratio: int = Field(..., le=MAX_STORED_INT, description="Originator share, 0..100")


class PartialExtractionRequest(BaseModel):
    quantity: int = Field(..., le=MAX_STORED_INT, description="Energy to return to the originator")


class TransferStewardshipRequest(BaseModel):
    new_originator: str = Field(..., min_length=1, max_length=128)


class SplitRequest(BaseModel):
    fragment_count: int = Field(
        ..., le=MAX_STORED_INT, description="Number of equal fragments (2..5)"
    )


class EmergencyRecoveryRequest(BaseModel):
    destination: str = Field(..., min_length=1, max_length=128)


class SignedFinalizeRequest(BaseModel):
    """Originator's EIP-191 signature over ``finalize-transmission:<id>``."""

    signature: str = Field(..., min_length=1, description="0x-prefixed 65-byte signature")


class CreditRequest(BaseModel):
    amount: int = Field(..., gt=0, le=MAX_STORED_INT)


# --- Overlays (discriminated on "kind") ---


class QuantumSignatureOverlay(BaseModel):
    kind: Literal["quantum_signature"]
    algorithm: str
    public_key_hash: str


class MetadataOverlay(BaseModel):
    kind: Literal["metadata"]
    key: str
    value: str = ""


class ZkVerificationOverlay(BaseModel):
    kind: Literal["zk_verification"]
    proof_system: str
    verification_key_hash: str
    public_inputs: int


class EncryptionOverlay(BaseModel):
    kind: Literal["encryption"]
    cipher: str
    key_fingerprint: str


class MultisigOverlay(BaseModel):
    kind: Literal["multisig"]
    signers: list[str]
    threshold: int


class TimelockOverlay(BaseModel):
    kind: Literal["timelock"]
    duration: int


class RateLimitingOverlay(BaseModel):
    kind: Literal["rate_limiting"]
    max_operations: int
    window: int


class TamperMonitoringOverlay(BaseModel):
    kind: Literal["tamper_monitoring"]
    sensitivity: int
    alert_principal: str


OverlayRequest = Annotated[
    QuantumSignatureOverlay
    | MetadataOverlay
    | ZkVerificationOverlay
    | EncryptionOverlay
    | MultisigOverlay
    | TimelockOverlay
    | RateLimitingOverlay
    | TamperMonitoringOverlay,
    Discriminator("kind"),
]


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class CrystalResponse(BaseModel):
    """Response schema for a custody record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    originator: str
    beneficiary: str
    amount: int
    tag: int
    phase_count: int
    phase_amount: int
    state: str
    genesis_time: int
    decay_deadline: int
    parent_id: int | None
    created_at: datetime
    updated_at: datetime


class CrystalEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    crystal_id: int
    event_type: str
    old_state: str | None
    new_state: str
    actor: str
    block_height: int
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class StabilityResponse(BaseModel):
    crystal_id: int
    is_stable: bool
    remaining_time: int
    state: str
    total_lifetime: int


class CrystalStatusResponse(BaseModel):
    """Lightweight status check response."""

    crystal_id: int
    state: str
    amount: int
    allowed_operations: list[str] = Field(
        description="Operations the record's current state permits"
    )


class StatisticsResponse(BaseModel):
    total_records: int
    stability_period: int
    current_time: int


class BalanceResponse(BaseModel):
    principal: str
    balance: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    block_height: int = 0
