"""Tests for overlay registration.

Overlays validate their parameters and append an event; only encryption and
timelock move the crystal into a new state.
"""

from __future__ import annotations

import pytest
from conftest import BENEFICIARY, CUSTODY, ORIGINATOR, SUPERVISOR, ctx

from crystal_custody.domain.enums import CrystalState, EventType
from crystal_custody.domain.exceptions import (
    AlreadyProcessedError,
    InvalidParameterError,
    InvalidQuantityError,
    PermissionDeniedError,
)

HASH = "ab" * 32


@pytest.fixture
async def crystal_id(service) -> int:
    record = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 500, 3)
    return record.id


async def _last_event(service, crystal_id):
    return (await service.get_events(crystal_id))[-1]


class TestQuantumSignature:
    @pytest.mark.asyncio
    async def test_register(self, service, crystal_id) -> None:
        record = await service.register_quantum_signature(
            ctx(BENEFICIARY, 1), crystal_id, "falcon512", "0x" + HASH
        )
        assert record.state == CrystalState.STABILIZING
        event = await _last_event(service, crystal_id)
        assert event.event_type == EventType.QUANTUM_SIGNATURE_REGISTERED
        assert event.metadata_json["algorithm"] == "falcon512"

    @pytest.mark.asyncio
    async def test_unknown_algorithm(self, service, crystal_id) -> None:
        with pytest.raises(InvalidParameterError):
            await service.register_quantum_signature(ctx(ORIGINATOR, 1), crystal_id, "rsa2048", HASH)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_hash", ["", "ab" * 31, "zz" * 32, "ab" * 33])
    async def test_malformed_hash(self, service, crystal_id, bad_hash) -> None:
        with pytest.raises(InvalidParameterError):
            await service.register_quantum_signature(
                ctx(ORIGINATOR, 1), crystal_id, "dilithium2", bad_hash
            )

    @pytest.mark.asyncio
    async def test_supervisor_not_allowed(self, service, crystal_id) -> None:
        with pytest.raises(PermissionDeniedError):
            await service.register_quantum_signature(
                ctx(SUPERVISOR, 1), crystal_id, "dilithium2", HASH
            )


class TestMetadata:
    @pytest.mark.asyncio
    async def test_embed(self, service, crystal_id) -> None:
        await service.embed_metadata(ctx(SUPERVISOR, 1), crystal_id, "invoice", "INV-42")
        event = await _last_event(service, crystal_id)
        assert event.metadata_json == {"key": "invoice", "value": "INV-42"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("key", "value"), [("", "x"), ("k" * 33, "x"), ("k", "v" * 257)])
    async def test_lengths(self, service, crystal_id, key, value) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.embed_metadata(ctx(ORIGINATOR, 1), crystal_id, key, value)

    @pytest.mark.asyncio
    async def test_allowed_in_anomalous_state(self, service, crystal_id) -> None:
        await service.report_anomaly(ctx(BENEFICIARY, 1), crystal_id)
        record = await service.embed_metadata(ctx(ORIGINATOR, 2), crystal_id, "note", "")
        assert record.state == CrystalState.ANOMALOUS

    @pytest.mark.asyncio
    async def test_rejected_on_terminal_crystal(self, service, crystal_id) -> None:
        await service.finalize_transmission(ctx(ORIGINATOR, 1), crystal_id)
        with pytest.raises(AlreadyProcessedError):
            await service.embed_metadata(ctx(ORIGINATOR, 2), crystal_id, "note", "late")


class TestZkVerification:
    @pytest.mark.asyncio
    async def test_register(self, service, crystal_id) -> None:
        await service.register_zk_verification(ctx(ORIGINATOR, 1), crystal_id, "plonk", HASH, 16)
        event = await _last_event(service, crystal_id)
        assert event.metadata_json["public_inputs"] == 16

    @pytest.mark.asyncio
    async def test_unknown_proof_system(self, service, crystal_id) -> None:
        with pytest.raises(InvalidParameterError):
            await service.register_zk_verification(ctx(ORIGINATOR, 1), crystal_id, "snark", HASH, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("inputs", [0, 17])
    async def test_public_input_bounds(self, service, crystal_id, inputs) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.register_zk_verification(
                ctx(ORIGINATOR, 1), crystal_id, "groth16", HASH, inputs
            )


class TestEncryptionAndTimelock:
    @pytest.mark.asyncio
    async def test_encryption_changes_state(self, service, crystal_id) -> None:
        record = await service.apply_encryption(
            ctx(ORIGINATOR, 1), crystal_id, "chacha20-poly1305", HASH
        )
        assert record.state == CrystalState.ENCRYPTED

        with pytest.raises(AlreadyProcessedError):
            await service.finalize_transmission(ctx(ORIGINATOR, 2), crystal_id)

    @pytest.mark.asyncio
    async def test_encrypted_crystal_can_be_recovered(self, service, funded, crystal_id) -> None:
        await service.apply_encryption(ctx(ORIGINATOR, 1), crystal_id, "aes-256-gcm", HASH)
        await service.emergency_recovery(ctx(SUPERVISOR, 2), crystal_id, BENEFICIARY)
        assert await funded.balance_of(BENEFICIARY) == 500
        assert await funded.balance_of(CUSTODY) == 0

    @pytest.mark.asyncio
    async def test_unknown_cipher(self, service, crystal_id) -> None:
        with pytest.raises(InvalidParameterError):
            await service.apply_encryption(ctx(ORIGINATOR, 1), crystal_id, "rot13", HASH)
        assert (await service.get_record(crystal_id)).state == CrystalState.STABILIZING

    @pytest.mark.asyncio
    async def test_timelock(self, service, crystal_id) -> None:
        record = await service.apply_timelock(ctx(ORIGINATOR, 10), crystal_id, 4320)
        assert record.state == CrystalState.TIMELOCKED
        event = await _last_event(service, crystal_id)
        assert event.metadata_json == {"duration": 4320, "unlock_height": 4330}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, 4321])
    async def test_timelock_bounds(self, service, crystal_id, duration) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.apply_timelock(ctx(ORIGINATOR, 1), crystal_id, duration)


class TestMultisig:
    @pytest.mark.asyncio
    async def test_register(self, service, crystal_id) -> None:
        await service.register_multisig_scheme(
            ctx(ORIGINATOR, 1), crystal_id, ["k1", "k2", "k3"], 2
        )
        event = await _last_event(service, crystal_id)
        assert event.metadata_json == {"signers": ["k1", "k2", "k3"], "threshold": 2}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("signers", "threshold"),
        [(["k1"], 1), ([f"k{i}" for i in range(11)], 2), (["k1", "k2"], 0), (["k1", "k2"], 3)],
    )
    async def test_bounds(self, service, crystal_id, signers, threshold) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.register_multisig_scheme(ctx(ORIGINATOR, 1), crystal_id, signers, threshold)

    @pytest.mark.asyncio
    async def test_duplicate_signers(self, service, crystal_id) -> None:
        with pytest.raises(InvalidParameterError):
            await service.register_multisig_scheme(ctx(ORIGINATOR, 1), crystal_id, ["k1", "k1"], 1)


class TestRateLimitingAndTamper:
    @pytest.mark.asyncio
    async def test_rate_limiting(self, service, crystal_id) -> None:
        await service.configure_rate_limiting(ctx(SUPERVISOR, 1), crystal_id, 100, 1440)
        event = await _last_event(service, crystal_id)
        assert event.event_type == EventType.RATE_LIMITING_CONFIGURED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("ops", "window"), [(0, 10), (101, 10), (5, 0), (5, 1441)])
    async def test_rate_limiting_bounds(self, service, crystal_id, ops, window) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.configure_rate_limiting(ctx(ORIGINATOR, 1), crystal_id, ops, window)

    @pytest.mark.asyncio
    async def test_tamper_monitoring(self, service, crystal_id) -> None:
        await service.register_tamper_monitoring(ctx(ORIGINATOR, 1), crystal_id, 10, "watchdog")
        event = await _last_event(service, crystal_id)
        assert event.metadata_json == {"sensitivity": 10, "alert_principal": "watchdog"}

    @pytest.mark.asyncio
    async def test_tamper_alert_cannot_be_custody(self, service, crystal_id) -> None:
        with pytest.raises(InvalidParameterError):
            await service.register_tamper_monitoring(ctx(ORIGINATOR, 1), crystal_id, 5, CUSTODY)

    @pytest.mark.asyncio
    async def test_tamper_sensitivity_bounds(self, service, crystal_id) -> None:
        with pytest.raises(InvalidQuantityError):
            await service.register_tamper_monitoring(ctx(ORIGINATOR, 1), crystal_id, 11, "watchdog")
