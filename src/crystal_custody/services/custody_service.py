"""Custody Service — the transition engine for custody records.

This is the application layer that coordinates between:
    - Domain state machine and role table (transition guards)
    - Repositories (data access)
    - Value transfer service (payouts)
    - Event log (audit trail)

Every operation follows the same shape:
    load record -> permission -> state -> timing -> numeric checks
    -> transfer(s) -> state write -> one audit event

All checks run before any mutation, and transfers are applied before the
record is written, inside the caller's transaction.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import re
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from crystal_custody.config import get_settings
from crystal_custody.domain import rules
from crystal_custody.domain.enums import (
    ACTIVE_STATES,
    Cipher,
    CrystalState,
    EventType,
    ProofSystem,
    QuantumAlgorithm,
)
from crystal_custody.domain.exceptions import (
    AlreadyProcessedError,
    CrystalNotFoundError,
    ExpiredError,
    InvalidAmountError,
    InvalidBeneficiaryError,
    InvalidIdentifierError,
    InvalidOriginatorError,
    InvalidParameterError,
    InvalidTagError,
    NotYetExpiredError,
    PermissionDeniedError,
    TransferError,
    TransferFailedError,
)
from crystal_custody.domain.permissions import require_role, roles_of
from crystal_custody.domain.state_machine import allowed_operations, resolve_transition
from crystal_custody.domain.transfer_protocol import Move
from crystal_custody.domain.verifier_protocol import same_identity, signed_release_message
from crystal_custody.infrastructure.database.orm_models import CustodyRecord
from crystal_custody.infrastructure.database.repositories import (
    BalanceRepository,
    CrystalRepository,
    EventRepository,
    SequenceRepository,
)
from crystal_custody.logging_config import get_logger
from crystal_custody.services.transfer_service import LedgerTransferService
from crystal_custody.verifiers.signature import EthSignatureVerifier

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from crystal_custody.domain.context import CallContext
    from crystal_custody.domain.transfer_protocol import ValueTransferService
    from crystal_custody.domain.verifier_protocol import SignatureVerifier
    from crystal_custody.infrastructure.database.orm_models import CustodyEvent

logger = get_logger(__name__)

_HEX64 = re.compile(r"(0x)?[0-9a-fA-F]{64}")

# One serializer per event loop: at most one transition runs at a time.
_lock: asyncio.Lock | None = None
_lock_loop: asyncio.AbstractEventLoop | None = None


def _ledger_lock() -> asyncio.Lock:
    global _lock, _lock_loop
    loop = asyncio.get_running_loop()
    if _lock is None or _lock_loop is not loop:
        _lock = asyncio.Lock()
        _lock_loop = loop
    return _lock


def _serialized(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    @functools.wraps(method)
    async def wrapper(self: CustodyService, *args: Any, **kwargs: Any) -> Any:
        async with _ledger_lock():
            return await method(self, *args, **kwargs)

    return wrapper


class CustodyService:
    """Creates, queries and transitions custody records."""

    def __init__(
        self,
        session: AsyncSession,
        transfers: ValueTransferService | None = None,
        verifier: SignatureVerifier | None = None,
        *,
        custody_account: str | None = None,
        supervisor: str | None = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._crystal_repo = CrystalRepository(session)
        self._sequence_repo = SequenceRepository(session)
        self._event_repo = EventRepository(session)
        self._balance_repo = BalanceRepository(session)
        self._transfers = transfers or LedgerTransferService(session)
        self._verifier = verifier or EthSignatureVerifier()
        self._custody_account = custody_account or settings.custody_account
        self._supervisor = supervisor or settings.supervisor_identity

    @property
    def custody_account(self) -> str:
        return self._custody_account

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @_serialized
    async def spawn(
        self,
        ctx: CallContext,
        beneficiary: str,
        amount: int,
        tag: int,
    ) -> CustodyRecord:
        """Fund a new crystal from the caller's balance. State: stabilizing."""
        self._validate_creation(ctx, beneficiary, amount, tag)
        return await self._fund_and_create(
            ctx, beneficiary, amount, tag, phase_count=1, event_type=EventType.CRYSTAL_SPAWNED
        )

    @_serialized
    async def phased_create(
        self,
        ctx: CallContext,
        beneficiary: str,
        amount: int,
        tag: int,
        phase_count: int,
    ) -> CustodyRecord:
        """Like spawn, but the amount must divide exactly into ``phase_count`` phases."""
        self._validate_creation(ctx, beneficiary, amount, tag)
        rules.require_range("phase_count", phase_count, rules.MIN_PHASES, rules.MAX_PHASES)
        rules.divide_exactly(amount, phase_count)
        return await self._fund_and_create(
            ctx,
            beneficiary,
            amount,
            tag,
            phase_count=phase_count,
            event_type=EventType.CRYSTAL_PHASED_CREATED,
        )

    # ------------------------------------------------------------------
    # Release paths
    # ------------------------------------------------------------------

    @_serialized
    async def finalize_transmission(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Pay the full amount to the beneficiary. stabilizing -> transmitted."""
        record, target = await self._begin(ctx, crystal_id, "finalize_transmission")
        self._require_fresh(ctx, record)
        return await self._release_all(
            ctx, record, target, record.beneficiary, EventType.ENERGY_TRANSMITTED, "crystal.transmitted"
        )

    @_serialized
    async def signed_finalize(
        self,
        ctx: CallContext,
        crystal_id: int,
        signature: str | bytes,
    ) -> CustodyRecord:
        """Release to the beneficiary on the strength of the originator's signature.

        Anyone may relay the call; the signer recovered from ``signature``
        over ``finalize-transmission:<id>`` must be the current originator.
        """
        record = await self._load(crystal_id)
        self._authorize(ctx, record, "signed_finalize")
        signer = self._verifier.recover_signer(signed_release_message(record.id), signature)
        if not same_identity(signer, record.originator):
            raise PermissionDeniedError(signer, "signed_finalize", record.id)
        target = self._fire_transition(record, "signed_finalize")
        self._require_fresh(ctx, record)
        return await self._release_all(
            ctx,
            record,
            target,
            record.beneficiary,
            EventType.ENERGY_TRANSMITTED,
            "crystal.transmitted",
            signer=signer,
        )

    @_serialized
    async def revert_energy(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Supervisor returns the full amount to the originator. stabilizing -> reverted."""
        record, target = await self._begin(ctx, crystal_id, "revert_energy")
        return await self._release_all(
            ctx, record, target, record.originator, EventType.ENERGY_REVERTED, "crystal.reverted"
        )

    @_serialized
    async def dissolve(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Originator withdraws before the deadline. stabilizing -> dissolved."""
        record, target = await self._begin(ctx, crystal_id, "dissolve")
        self._require_fresh(ctx, record)
        return await self._release_all(
            ctx, record, target, record.originator, EventType.CRYSTAL_DISSOLVED, "crystal.dissolved"
        )

    @_serialized
    async def reclaim_decayed(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Return an expired crystal's energy to the originator. -> decayed."""
        record, target = await self._begin(ctx, crystal_id, "reclaim_decayed")
        if not rules.is_expired(record.decay_deadline, ctx.now):
            raise NotYetExpiredError(record.id, record.decay_deadline + 1, ctx.now)
        return await self._release_all(
            ctx, record, target, record.originator, EventType.DECAYED_RECLAIMED, "crystal.decayed"
        )

    @_serialized
    async def partial_extraction(
        self,
        ctx: CallContext,
        crystal_id: int,
        quantity: int,
    ) -> CustodyRecord:
        """Originator withdraws part of the amount; state is unchanged."""
        record, target = await self._begin(ctx, crystal_id, "partial_extraction")
        rules.require_range("quantity", quantity, 1, record.amount)

        old_state = CrystalState(record.state)
        await self._payout([(record.originator, quantity)])
        record.amount -= quantity
        return await self._commit(
            ctx,
            record,
            old_state,
            target,
            EventType.PARTIAL_EXTRACTION,
            "crystal.partially_extracted",
            quantity=quantity,
            remaining=record.amount,
        )

    @_serialized
    async def split(
        self,
        ctx: CallContext,
        crystal_id: int,
        fragment_count: int,
    ) -> CustodyRecord:
        """Divide a crystal into equal fresh fragments. stabilizing -> split.

        The energy never leaves custody: it moves from the split record to the
        fragment records, which start their own stability period at ``ctx.now``.
        """
        record, target = await self._begin(ctx, crystal_id, "split_into_fragments")
        rules.require_range(
            "fragment_count", fragment_count, rules.MIN_FRAGMENTS, rules.MAX_FRAGMENTS
        )
        # A record drained by partial_extraction has nothing left to divide.
        rules.require_range("amount", record.amount, 1, rules.MAX_STORED_INT)
        per_fragment = rules.divide_exactly(record.amount, fragment_count)

        old_state = CrystalState(record.state)
        fragment_ids: list[int] = []
        for _ in range(fragment_count):
            fragment = await self._insert_record(
                ctx,
                originator=record.originator,
                beneficiary=record.beneficiary,
                amount=per_fragment,
                tag=record.tag,
                phase_count=1,
                parent_id=record.id,
            )
            await self._event_repo.record(
                crystal_id=fragment.id,
                event_type=EventType.FRAGMENT_MATERIALIZED,
                old_state=None,
                new_state=CrystalState.STABILIZING,
                actor=ctx.caller,
                block_height=ctx.now,
                metadata={"parent_id": record.id, "amount": per_fragment, "tag": record.tag},
            )
            fragment_ids.append(fragment.id)

        record.amount = 0
        return await self._commit(
            ctx,
            record,
            old_state,
            target,
            EventType.CRYSTAL_SPLIT,
            "crystal.split",
            fragment_count=fragment_count,
            per_fragment=per_fragment,
            fragment_ids=fragment_ids,
        )

    @_serialized
    async def initiate_chrono_extraction(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Originator requests a delayed extraction. -> extraction_pending."""
        record, target = await self._begin(ctx, crystal_id, "initiate_chrono_extraction")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.CHRONO_EXTRACTION_INITIATED,
            "crystal.chrono_extraction_initiated",
            available_at=record.genesis_time + rules.CHRONO_EXTRACTION_DELAY,
        )

    @_serialized
    async def chrono_extraction(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Complete a pending extraction once the crystal is old enough. -> extracted."""
        record, target = await self._begin(ctx, crystal_id, "chrono_extraction")
        available_at = record.genesis_time + rules.CHRONO_EXTRACTION_DELAY
        if ctx.now < available_at:
            raise NotYetExpiredError(record.id, available_at, ctx.now)
        return await self._release_all(
            ctx, record, target, record.originator, EventType.CHRONO_EXTRACTED, "crystal.chrono_extracted"
        )

    # ------------------------------------------------------------------
    # Lifecycle without funds movement
    # ------------------------------------------------------------------

    @_serialized
    async def acknowledge_receipt(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Beneficiary confirms intent to receive. stabilizing -> acknowledged."""
        record, target = await self._begin(ctx, crystal_id, "acknowledge_receipt")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.RECEIPT_ACKNOWLEDGED,
            "crystal.acknowledged",
        )

    @_serialized
    async def extend_stability(
        self,
        ctx: CallContext,
        crystal_id: int,
        extension: int,
    ) -> CustodyRecord:
        """Push the decay deadline out by 1..1440 ticks."""
        record, target = await self._begin(ctx, crystal_id, "extend_stability")
        rules.require_range("extension", extension, 1, rules.MAX_STABILITY_EXTENSION)

        old_deadline = record.decay_deadline
        record.decay_deadline = old_deadline + extension
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.STABILITY_EXTENDED,
            "crystal.stability_extended",
            extension=extension,
            old_deadline=old_deadline,
            new_deadline=record.decay_deadline,
        )

    @_serialized
    async def transfer_stewardship(
        self,
        ctx: CallContext,
        crystal_id: int,
        new_originator: str,
    ) -> CustodyRecord:
        """Hand control (and reversion rights) of a crystal to another principal."""
        record, target = await self._begin(ctx, crystal_id, "transfer_stewardship")
        if new_originator == record.originator:
            raise InvalidOriginatorError("New originator must differ from the current originator")
        if new_originator == record.beneficiary:
            raise InvalidOriginatorError("New originator must differ from the beneficiary")
        if not new_originator or new_originator == self._custody_account:
            raise InvalidOriginatorError("The custody account cannot be an originator")

        previous = record.originator
        record.originator = new_originator
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.STEWARDSHIP_TRANSFERRED,
            "crystal.stewardship_transferred",
            previous_originator=previous,
            new_originator=new_originator,
        )

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    @_serialized
    async def report_anomaly(
        self,
        ctx: CallContext,
        crystal_id: int,
        reason: str = "",
    ) -> CustodyRecord:
        """Open a dispute. stabilizing|acknowledged -> anomalous."""
        record, target = await self._begin(ctx, crystal_id, "report_anomaly")
        self._require_fresh(ctx, record)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.ANOMALY_REPORTED,
            "crystal.anomaly_reported",
            reason=reason,
        )

    @_serialized
    async def balance_anomaly(
        self,
        ctx: CallContext,
        crystal_id: int,
        ratio: int,
    ) -> CustodyRecord:
        """Supervisor settles a dispute by percentage. anomalous -> balanced.

        The originator receives floor(amount * ratio / 100); the beneficiary
        receives the remainder.
        """
        record, target = await self._begin(ctx, crystal_id, "balance_anomaly")
        self._require_fresh(ctx, record)
        originator_share, beneficiary_share = rules.split_by_ratio(record.amount, ratio)

        old_state = CrystalState(record.state)
        await self._payout(
            [(record.originator, originator_share), (record.beneficiary, beneficiary_share)]
        )
        record.amount = 0
        return await self._commit(
            ctx,
            record,
            old_state,
            target,
            EventType.ANOMALY_BALANCED,
            "crystal.anomaly_balanced",
            ratio=ratio,
            originator_share=originator_share,
            beneficiary_share=beneficiary_share,
        )

    @_serialized
    async def isolate_unstable(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Flag a crystal as unstable. stabilizing|acknowledged -> isolated."""
        record, target = await self._begin(ctx, crystal_id, "isolate_unstable")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.CRYSTAL_ISOLATED,
            "crystal.isolated",
        )

    @_serialized
    async def freeze(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Supervisor halts a crystal pending recovery. -> frozen."""
        record, target = await self._begin(ctx, crystal_id, "freeze")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.CRYSTAL_FROZEN,
            "crystal.frozen",
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @_serialized
    async def initiate_recovery(self, ctx: CallContext, crystal_id: int) -> CustodyRecord:
        """Start the recovery flow. stabilizing|acknowledged|isolated -> recovering."""
        record, target = await self._begin(ctx, crystal_id, "initiate_recovery")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.RECOVERY_INITIATED,
            "crystal.recovery_initiated",
        )

    @_serialized
    async def emergency_recovery(
        self,
        ctx: CallContext,
        crystal_id: int,
        destination: str,
    ) -> CustodyRecord:
        """Supervisor moves a stuck crystal's energy to a safe destination. -> recovered."""
        record, target = await self._begin(ctx, crystal_id, "emergency_recovery")
        if destination == record.originator:
            raise InvalidBeneficiaryError("Recovery destination must differ from the originator")
        if not destination or destination == self._custody_account:
            raise InvalidBeneficiaryError("Recovery destination cannot be the custody account")
        return await self._release_all(
            ctx, record, target, destination, EventType.EMERGENCY_RECOVERED, "crystal.recovered"
        )

    # ------------------------------------------------------------------
    # Overlays (validation and event only)
    # ------------------------------------------------------------------

    @_serialized
    async def register_quantum_signature(
        self,
        ctx: CallContext,
        crystal_id: int,
        algorithm: str,
        public_key_hash: str,
    ) -> CustodyRecord:
        record, target = await self._begin(ctx, crystal_id, "register_quantum_signature")
        algorithm = _require_choice("algorithm", algorithm, QuantumAlgorithm)
        _require_hex64("public_key_hash", public_key_hash)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.QUANTUM_SIGNATURE_REGISTERED,
            "overlay.quantum_signature_registered",
            algorithm=algorithm,
            public_key_hash=public_key_hash,
        )

    @_serialized
    async def embed_metadata(
        self,
        ctx: CallContext,
        crystal_id: int,
        key: str,
        value: str,
    ) -> CustodyRecord:
        record, target = await self._begin(ctx, crystal_id, "embed_metadata")
        rules.require_range("key_length", len(key), 1, rules.MAX_METADATA_KEY_LENGTH)
        rules.require_range("value_length", len(value), 0, rules.MAX_METADATA_VALUE_LENGTH)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.METADATA_EMBEDDED,
            "overlay.metadata_embedded",
            key=key,
            value=value,
        )

    @_serialized
    async def register_zk_verification(
        self,
        ctx: CallContext,
        crystal_id: int,
        proof_system: str,
        verification_key_hash: str,
        public_inputs: int,
    ) -> CustodyRecord:
        record, target = await self._begin(ctx, crystal_id, "register_zk_verification")
        proof_system = _require_choice("proof_system", proof_system, ProofSystem)
        _require_hex64("verification_key_hash", verification_key_hash)
        rules.require_range("public_inputs", public_inputs, 1, rules.MAX_ZK_PUBLIC_INPUTS)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.ZK_VERIFICATION_REGISTERED,
            "overlay.zk_verification_registered",
            proof_system=proof_system,
            verification_key_hash=verification_key_hash,
            public_inputs=public_inputs,
        )

    @_serialized
    async def apply_encryption(
        self,
        ctx: CallContext,
        crystal_id: int,
        cipher: str,
        key_fingerprint: str,
    ) -> CustodyRecord:
        """Mark the crystal encrypted. stabilizing|acknowledged -> encrypted."""
        record, target = await self._begin(ctx, crystal_id, "apply_encryption")
        cipher = _require_choice("cipher", cipher, Cipher)
        _require_hex64("key_fingerprint", key_fingerprint)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.ENCRYPTION_APPLIED,
            "overlay.encryption_applied",
            cipher=cipher,
            key_fingerprint=key_fingerprint,
        )

    @_serialized
    async def register_multisig_scheme(
        self,
        ctx: CallContext,
        crystal_id: int,
        signers: Sequence[str],
        threshold: int,
    ) -> CustodyRecord:
        """Record a signer set and threshold. No quorum is ever counted."""
        record, target = await self._begin(ctx, crystal_id, "register_multisig_scheme")
        rules.require_range(
            "signer_count", len(signers), rules.MIN_MULTISIG_SIGNERS, rules.MAX_MULTISIG_SIGNERS
        )
        if len(set(signers)) != len(signers):
            raise InvalidParameterError("signers", "duplicate signer")
        if any(not signer for signer in signers):
            raise InvalidParameterError("signers", "empty signer identity")
        rules.require_range("threshold", threshold, 1, len(signers))
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.MULTISIG_SCHEME_REGISTERED,
            "overlay.multisig_scheme_registered",
            signers=list(signers),
            threshold=threshold,
        )

    @_serialized
    async def apply_timelock(
        self,
        ctx: CallContext,
        crystal_id: int,
        duration: int,
    ) -> CustodyRecord:
        """Mark the crystal timelocked. stabilizing|acknowledged -> timelocked."""
        record, target = await self._begin(ctx, crystal_id, "apply_timelock")
        rules.require_range("duration", duration, 1, rules.MAX_TIMELOCK_DURATION)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.TIMELOCK_APPLIED,
            "overlay.timelock_applied",
            duration=duration,
            unlock_height=ctx.now + duration,
        )

    @_serialized
    async def configure_rate_limiting(
        self,
        ctx: CallContext,
        crystal_id: int,
        max_operations: int,
        window: int,
    ) -> CustodyRecord:
        record, target = await self._begin(ctx, crystal_id, "configure_rate_limiting")
        rules.require_range("max_operations", max_operations, 1, rules.MAX_RATE_LIMIT_OPERATIONS)
        rules.require_range("window", window, 1, rules.MAX_RATE_LIMIT_WINDOW)
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.RATE_LIMITING_CONFIGURED,
            "overlay.rate_limiting_configured",
            max_operations=max_operations,
            window=window,
        )

    @_serialized
    async def register_tamper_monitoring(
        self,
        ctx: CallContext,
        crystal_id: int,
        sensitivity: int,
        alert_principal: str,
    ) -> CustodyRecord:
        record, target = await self._begin(ctx, crystal_id, "register_tamper_monitoring")
        rules.require_range("sensitivity", sensitivity, 1, rules.MAX_TAMPER_SENSITIVITY)
        if not alert_principal or alert_principal == self._custody_account:
            raise InvalidParameterError("alert_principal", "must name a principal other than the custody account")
        return await self._commit(
            ctx,
            record,
            CrystalState(record.state),
            target,
            EventType.TAMPER_MONITORING_REGISTERED,
            "overlay.tamper_monitoring_registered",
            sensitivity=sensitivity,
            alert_principal=alert_principal,
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_record(self, crystal_id: int) -> CustodyRecord:
        """Get a record or raise."""
        return await self._load(crystal_id, lock=False)

    async def check_stability(self, crystal_id: int, now: int) -> dict:
        """Report whether a crystal is still within its stability window."""
        record = await self._load(crystal_id, lock=False)
        state = CrystalState(record.state)
        return {
            "crystal_id": record.id,
            "is_stable": state in ACTIVE_STATES and not rules.is_expired(record.decay_deadline, now),
            "remaining_time": max(0, record.decay_deadline - now),
            "state": state.value,
            "total_lifetime": record.decay_deadline - record.genesis_time,
        }

    async def get_statistics(self, now: int) -> dict:
        return {
            "total_records": await self._sequence_repo.current_value(),
            "stability_period": rules.STABILITY_PERIOD,
            "current_time": now,
        }

    async def get_status(self, crystal_id: int) -> dict:
        """Get the record state with the operations its state permits."""
        record = await self._load(crystal_id, lock=False)
        return {
            "crystal_id": record.id,
            "state": record.state,
            "amount": record.amount,
            "allowed_operations": allowed_operations(record.state),
        }

    async def get_fragments(self, crystal_id: int) -> list[CustodyRecord]:
        await self._load(crystal_id, lock=False)
        return await self._crystal_repo.get_fragments(crystal_id)

    async def get_events(self, crystal_id: int) -> list[CustodyEvent]:
        """Get audit trail."""
        await self._load(crystal_id, lock=False)
        return await self._event_repo.get_by_crystal(crystal_id)

    async def get_balance(self, principal: str) -> int:
        return await self._balance_repo.get_balance(principal)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_creation(self, ctx: CallContext, beneficiary: str, amount: int, tag: int) -> None:
        if not 0 < amount <= rules.MAX_STORED_INT:
            raise InvalidAmountError(amount)
        if not beneficiary or beneficiary == ctx.caller:
            raise InvalidBeneficiaryError("Beneficiary must differ from the originator")
        if beneficiary == self._custody_account:
            raise InvalidBeneficiaryError("The custody account cannot be a beneficiary")
        if not 0 < tag <= rules.MAX_STORED_INT:
            raise InvalidTagError(tag)
        if ctx.caller == self._custody_account:
            raise InvalidOriginatorError("The custody account cannot originate a crystal")

    async def _fund_and_create(
        self,
        ctx: CallContext,
        beneficiary: str,
        amount: int,
        tag: int,
        phase_count: int,
        event_type: EventType,
    ) -> CustodyRecord:
        # Funds move in before an id is allocated, so a failed deposit burns no id.
        try:
            await self._transfers.settle(
                [Move(amount=amount, sender=ctx.caller, recipient=self._custody_account)]
            )
        except TransferError as err:
            raise TransferFailedError(err.message) from err

        record = await self._insert_record(
            ctx,
            originator=ctx.caller,
            beneficiary=beneficiary,
            amount=amount,
            tag=tag,
            phase_count=phase_count,
        )
        await self._event_repo.record(
            crystal_id=record.id,
            event_type=event_type,
            old_state=None,
            new_state=CrystalState.STABILIZING,
            actor=ctx.caller,
            block_height=ctx.now,
            metadata={
                "amount": amount,
                "tag": tag,
                "beneficiary": beneficiary,
                "phase_count": phase_count,
                "decay_deadline": record.decay_deadline,
            },
        )
        logger.info(
            "crystal.spawned",
            crystal_id=record.id,
            originator=ctx.caller,
            beneficiary=beneficiary,
            amount=amount,
            phase_count=phase_count,
        )
        return record

    async def _insert_record(
        self,
        ctx: CallContext,
        *,
        originator: str,
        beneficiary: str,
        amount: int,
        tag: int,
        phase_count: int,
        parent_id: int | None = None,
    ) -> CustodyRecord:
        crystal_id = await self._sequence_repo.next_value()
        record = CustodyRecord(
            id=crystal_id,
            originator=originator,
            beneficiary=beneficiary,
            amount=amount,
            tag=tag,
            phase_count=phase_count,
            phase_amount=amount // phase_count,
            state=CrystalState.STABILIZING.value,
            genesis_time=ctx.now,
            decay_deadline=rules.initial_deadline(ctx.now),
            parent_id=parent_id,
        )
        return await self._crystal_repo.create(record)

    async def _load(self, crystal_id: int, lock: bool = True) -> CustodyRecord:
        latest = await self._sequence_repo.current_value()
        if crystal_id < 1 or crystal_id > latest:
            raise InvalidIdentifierError(crystal_id, latest)
        if lock:
            record = await self._crystal_repo.get_for_update(crystal_id)
        else:
            record = await self._crystal_repo.get_by_id(crystal_id)
        if record is None:
            raise CrystalNotFoundError(crystal_id)
        return record

    def _authorize(self, ctx: CallContext, record: CustodyRecord, operation: str) -> None:
        roles = roles_of(ctx.caller, record.originator, record.beneficiary, self._supervisor)
        require_role(operation, roles, ctx.caller, record.id)

    def _fire_transition(self, record: CustodyRecord, operation: str) -> CrystalState:
        """Resolve the target state, or raise AlreadyProcessedError."""
        try:
            return resolve_transition(record.state, operation)
        except TransitionNotAllowed as err:
            raise AlreadyProcessedError(record.id, record.state, operation) from err

    async def _begin(
        self,
        ctx: CallContext,
        crystal_id: int,
        operation: str,
    ) -> tuple[CustodyRecord, CrystalState]:
        record = await self._load(crystal_id)
        self._authorize(ctx, record, operation)
        return record, self._fire_transition(record, operation)

    @staticmethod
    def _require_fresh(ctx: CallContext, record: CustodyRecord) -> None:
        if rules.is_expired(record.decay_deadline, ctx.now):
            raise ExpiredError(record.id, record.decay_deadline, ctx.now)

    async def _payout(self, legs: Sequence[tuple[str, int]]) -> None:
        """Move energy out of custody as one all-or-nothing batch.

        Zero-value legs are dropped; a batch with nothing left is a no-op.
        """
        moves = [
            Move(amount=amount, sender=self._custody_account, recipient=recipient)
            for recipient, amount in legs
            if amount > 0
        ]
        try:
            await self._transfers.settle(moves)
        except TransferError as err:
            raise TransferFailedError(err.message) from err

    async def _release_all(
        self,
        ctx: CallContext,
        record: CustodyRecord,
        target: CrystalState,
        recipient: str,
        event_type: EventType,
        log_event: str,
        **metadata: Any,
    ) -> CustodyRecord:
        """Pay the whole held amount to ``recipient`` and move to ``target``."""
        old_state = CrystalState(record.state)
        amount = record.amount
        await self._payout([(recipient, amount)])
        record.amount = 0
        return await self._commit(
            ctx,
            record,
            old_state,
            target,
            event_type,
            log_event,
            amount=amount,
            recipient=recipient,
            tag=record.tag,
            **metadata,
        )

    async def _commit(
        self,
        ctx: CallContext,
        record: CustodyRecord,
        old_state: CrystalState,
        new_state: CrystalState,
        event_type: EventType,
        log_event: str,
        **metadata: Any,
    ) -> CustodyRecord:
        record.state = new_state.value
        await self._crystal_repo.save(record)
        await self._event_repo.record(
            crystal_id=record.id,
            event_type=event_type,
            old_state=old_state,
            new_state=new_state,
            actor=ctx.caller,
            block_height=ctx.now,
            metadata=metadata or None,
        )
        logger.info(
            log_event,
            crystal_id=record.id,
            old_state=old_state.value,
            new_state=new_state.value,
            **metadata,
        )
        return record


def _require_choice(name: str, value: str, choices: type[enum.StrEnum]) -> str:
    try:
        return choices(value).value
    except ValueError as err:
        valid = ", ".join(c.value for c in choices)
        raise InvalidParameterError(name, f"'{value}' is not one of: {valid}") from err


def _require_hex64(name: str, value: str) -> None:
    if not _HEX64.fullmatch(value):
        raise InvalidParameterError(name, "expected 64 hexadecimal characters")
