"""Custody REST API routes.

Every mutating endpoint runs one CustodyService operation inside its own
unit of work, so a lost optimistic-concurrency race is replayed against the
committed state instead of surfacing as a 500.

Routes:
    POST   /api/v1/crystals                                 — Spawn (or phased create)
    GET    /api/v1/crystals/{id}                            — Record details
    GET    /api/v1/crystals/{id}/status                     — State + allowed operations
    GET    /api/v1/crystals/{id}/stability                  — Stability window report
    GET    /api/v1/crystals/{id}/events                     — Audit trail
    GET    /api/v1/crystals/{id}/fragments                  — Records materialized by split
    GET    /api/v1/statistics                               — Ledger statistics
    POST   /api/v1/crystals/{id}/<operation>                — One transition per operation
    POST   /api/v1/crystals/{id}/overlays                   — Overlay registration
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_custody.api.deps import get_block_height, get_call_context, get_db_session
from crystal_custody.domain.context import CallContext
from crystal_custody.domain.exceptions import DuplicateOperationError
from crystal_custody.infrastructure.database.engine import run_unit_of_work
from crystal_custody.infrastructure.database.orm_models import CustodyRecord
from crystal_custody.infrastructure.redis_client import (
    claim_idempotency,
    complete_idempotency,
    is_redis_available,
    release_idempotency,
)
from crystal_custody.logging_config import get_logger
from crystal_custody.schemas.custody import (
    BalanceAnomalyRequest,
    CrystalEventResponse,
    CrystalResponse,
    CrystalStatusResponse,
    EmergencyRecoveryRequest,
    EncryptionOverlay,
    ExtendStabilityRequest,
    MetadataOverlay,
    MultisigOverlay,
    OverlayRequest,
    PartialExtractionRequest,
    QuantumSignatureOverlay,
    RateLimitingOverlay,
    ReportAnomalyRequest,
    SignedFinalizeRequest,
    SpawnCrystalRequest,
    SplitRequest,
    StabilityResponse,
    StatisticsResponse,
    TamperMonitoringOverlay,
    TimelockOverlay,
    TransferStewardshipRequest,
    ZkVerificationOverlay,
)
from crystal_custody.services.custody_service import CustodyService

router = APIRouter(prefix="/api/v1", tags=["Custody"])
logger = get_logger(__name__)

ServiceCall = Callable[[CustodyService], Awaitable[CustodyRecord]]


async def _transition(call: ServiceCall) -> CrystalResponse:
    record = await run_unit_of_work(lambda session: call(CustodyService(session)))
    return CrystalResponse.model_validate(record)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "/crystals",
    response_model=CrystalResponse,
    status_code=201,
    summary="Spawn a new crystal",
)
async def spawn_crystal(
    request: SpawnCrystalRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    """Fund a crystal from the caller's balance. Starts in STABILIZING.

    When ``phase_count`` is given, the amount must divide exactly into phases.
    """
    key = request.idempotency_key
    guarded = key is not None and is_redis_available()
    if key is not None and not guarded:
        logger.warning("idempotency.unavailable", key=key)
    if guarded and not await claim_idempotency(ctx.caller, key):
        raise DuplicateOperationError(key)

    async def create(svc: CustodyService) -> CustodyRecord:
        if request.phase_count is None:
            return await svc.spawn(ctx, request.beneficiary, request.amount, request.tag)
        return await svc.phased_create(
            ctx, request.beneficiary, request.amount, request.tag, request.phase_count
        )

    try:
        response = await _transition(create)
    except Exception:
        if guarded:
            await release_idempotency(ctx.caller, key)
        raise

    if guarded:
        await complete_idempotency(ctx.caller, key, response.id)
    return response


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get(
    "/crystals/{crystal_id}",
    response_model=CrystalResponse,
    summary="Get crystal details",
)
async def get_crystal(
    crystal_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> CrystalResponse:
    record = await CustodyService(session).get_record(crystal_id)
    return CrystalResponse.model_validate(record)


@router.get(
    "/crystals/{crystal_id}/status",
    response_model=CrystalStatusResponse,
    summary="Lightweight status check",
)
async def get_crystal_status(
    crystal_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> CrystalStatusResponse:
    """Return the current state and the operations it permits."""
    status = await CustodyService(session).get_status(crystal_id)
    return CrystalStatusResponse(**status)


@router.get(
    "/crystals/{crystal_id}/stability",
    response_model=StabilityResponse,
    summary="Check the stability window",
)
async def check_stability(
    crystal_id: int,
    block_height: int = Depends(get_block_height),
    session: AsyncSession = Depends(get_db_session),
) -> StabilityResponse:
    report = await CustodyService(session).check_stability(crystal_id, block_height)
    return StabilityResponse(**report)


@router.get(
    "/crystals/{crystal_id}/events",
    response_model=list[CrystalEventResponse],
    summary="Get audit trail",
)
async def get_crystal_events(
    crystal_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> list[CrystalEventResponse]:
    """Return every event recorded for the crystal, oldest first."""
    events = await CustodyService(session).get_events(crystal_id)
    return [CrystalEventResponse.model_validate(e) for e in events]


@router.get(
    "/crystals/{crystal_id}/fragments",
    response_model=list[CrystalResponse],
    summary="Get fragments materialized by a split",
)
async def get_fragments(
    crystal_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> list[CrystalResponse]:
    fragments = await CustodyService(session).get_fragments(crystal_id)
    return [CrystalResponse.model_validate(f) for f in fragments]


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    summary="Ledger statistics",
)
async def get_statistics(
    block_height: int = Depends(get_block_height),
    session: AsyncSession = Depends(get_db_session),
) -> StatisticsResponse:
    stats = await CustodyService(session).get_statistics(block_height)
    return StatisticsResponse(**stats)


# ---------------------------------------------------------------------------
# Release paths
# ---------------------------------------------------------------------------


@router.post(
    "/crystals/{crystal_id}/finalize-transmission",
    response_model=CrystalResponse,
    summary="Release the energy to the beneficiary",
)
async def finalize_transmission(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.finalize_transmission(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/signed-finalize",
    response_model=CrystalResponse,
    summary="Release to the beneficiary with the originator's signature",
)
async def signed_finalize(
    crystal_id: int,
    request: SignedFinalizeRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    """Anyone may relay; the signature must recover to the originator."""
    return await _transition(lambda svc: svc.signed_finalize(ctx, crystal_id, request.signature))


@router.post(
    "/crystals/{crystal_id}/revert-energy",
    response_model=CrystalResponse,
    summary="Supervisor reverts the energy to the originator",
)
async def revert_energy(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.revert_energy(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/dissolve",
    response_model=CrystalResponse,
    summary="Originator withdraws before the deadline",
)
async def dissolve(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.dissolve(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/reclaim-decayed",
    response_model=CrystalResponse,
    summary="Return an expired crystal's energy to the originator",
)
async def reclaim_decayed(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.reclaim_decayed(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/partial-extraction",
    response_model=CrystalResponse,
    summary="Withdraw part of the energy",
)
async def partial_extraction(
    crystal_id: int,
    request: PartialExtractionRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.partial_extraction(ctx, crystal_id, request.quantity))


@router.post(
    "/crystals/{crystal_id}/split",
    response_model=CrystalResponse,
    summary="Split into equal fragments",
)
async def split(
    crystal_id: int,
    request: SplitRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    """Returns the split (parent) record; fetch the fragments separately."""
    return await _transition(lambda svc: svc.split(ctx, crystal_id, request.fragment_count))


@router.post(
    "/crystals/{crystal_id}/initiate-chrono-extraction",
    response_model=CrystalResponse,
    summary="Request a delayed extraction",
)
async def initiate_chrono_extraction(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.initiate_chrono_extraction(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/chrono-extraction",
    response_model=CrystalResponse,
    summary="Complete a pending extraction",
)
async def chrono_extraction(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.chrono_extraction(ctx, crystal_id))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/crystals/{crystal_id}/acknowledge-receipt",
    response_model=CrystalResponse,
    summary="Beneficiary acknowledges the crystal",
)
async def acknowledge_receipt(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.acknowledge_receipt(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/extend-stability",
    response_model=CrystalResponse,
    summary="Push the decay deadline out",
)
async def extend_stability(
    crystal_id: int,
    request: ExtendStabilityRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.extend_stability(ctx, crystal_id, request.extension))


@router.post(
    "/crystals/{crystal_id}/transfer-stewardship",
    response_model=CrystalResponse,
    summary="Hand the crystal to a new originator",
)
async def transfer_stewardship(
    crystal_id: int,
    request: TransferStewardshipRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(
        lambda svc: svc.transfer_stewardship(ctx, crystal_id, request.new_originator)
    )


# ---------------------------------------------------------------------------
# Disputes and recovery
# ---------------------------------------------------------------------------


@router.post(
    "/crystals/{crystal_id}/report-anomaly",
    response_model=CrystalResponse,
    summary="Open a dispute",
)
async def report_anomaly(
    crystal_id: int,
    request: ReportAnomalyRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.report_anomaly(ctx, crystal_id, request.reason))


@router.post(
    "/crystals/{crystal_id}/balance-anomaly",
    response_model=CrystalResponse,
    summary="Supervisor settles a dispute by ratio",
)
async def balance_anomaly(
    crystal_id: int,
    request: BalanceAnomalyRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.balance_anomaly(ctx, crystal_id, request.ratio))


@router.post(
    "/crystals/{crystal_id}/isolate-unstable",
    response_model=CrystalResponse,
    summary="Flag the crystal as unstable",
)
async def isolate_unstable(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.isolate_unstable(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/freeze",
    response_model=CrystalResponse,
    summary="Supervisor freezes the crystal",
)
async def freeze(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.freeze(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/initiate-recovery",
    response_model=CrystalResponse,
    summary="Start the recovery flow",
)
async def initiate_recovery(
    crystal_id: int,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(lambda svc: svc.initiate_recovery(ctx, crystal_id))


@router.post(
    "/crystals/{crystal_id}/emergency-recovery",
    response_model=CrystalResponse,
    summary="Supervisor moves the energy to a safe destination",
)
async def emergency_recovery(
    crystal_id: int,
    request: EmergencyRecoveryRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    return await _transition(
        lambda svc: svc.emergency_recovery(ctx, crystal_id, request.destination)
    )


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------


def _overlay_call(ctx: CallContext, crystal_id: int, overlay: OverlayRequest) -> ServiceCall:
    """Map an overlay body onto the matching service call."""
    match overlay:
        case QuantumSignatureOverlay():
            return lambda svc: svc.register_quantum_signature(
                ctx, crystal_id, overlay.algorithm, overlay.public_key_hash
            )
        case MetadataOverlay():
            return lambda svc: svc.embed_metadata(ctx, crystal_id, overlay.key, overlay.value)
        case ZkVerificationOverlay():
            return lambda svc: svc.register_zk_verification(
                ctx,
                crystal_id,
                overlay.proof_system,
                overlay.verification_key_hash,
                overlay.public_inputs,
            )
        case EncryptionOverlay():
            return lambda svc: svc.apply_encryption(
                ctx, crystal_id, overlay.cipher, overlay.key_fingerprint
            )
        case MultisigOverlay():
            return lambda svc: svc.register_multisig_scheme(
                ctx, crystal_id, overlay.signers, overlay.threshold
            )
        case TimelockOverlay():
            return lambda svc: svc.apply_timelock(ctx, crystal_id, overlay.duration)
        case RateLimitingOverlay():
            return lambda svc: svc.configure_rate_limiting(
                ctx, crystal_id, overlay.max_operations, overlay.window
            )
        case TamperMonitoringOverlay():
            return lambda svc: svc.register_tamper_monitoring(
                ctx, crystal_id, overlay.sensitivity, overlay.alert_principal
            )
    raise TypeError(f"Unhandled overlay kind: {overlay.kind}")


@router.post(
    "/crystals/{crystal_id}/overlays",
    response_model=CrystalResponse,
    summary="Register an overlay on the crystal",
)
async def register_overlay(
    crystal_id: int,
    overlay: OverlayRequest,
    ctx: CallContext = Depends(get_call_context),
) -> CrystalResponse:
    """Validate and record an overlay. Encryption and timelock also change state."""
    return await _transition(_overlay_call(ctx, crystal_id, overlay))
