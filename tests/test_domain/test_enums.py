"""Tests for domain enumerations."""

from __future__ import annotations

from crystal_custody.domain.enums import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    Cipher,
    CrystalState,
    EventType,
    ProofSystem,
    QuantumAlgorithm,
    Role,
)


class TestCrystalState:
    def test_all_states_exist(self) -> None:
        expected = {
            "stabilizing", "acknowledged", "anomalous", "isolated", "timelocked",
            "encrypted", "frozen", "extraction_pending", "recovering",
            "transmitted", "reverted", "dissolved", "decayed", "extracted",
            "split", "balanced", "recovered",
        }
        actual = {s.value for s in CrystalState}
        assert actual == expected

    def test_state_is_str_enum(self) -> None:
        assert isinstance(CrystalState.STABILIZING, str)
        assert CrystalState.STABILIZING == "stabilizing"

    def test_terminal_and_active_are_disjoint(self) -> None:
        assert not TERMINAL_STATES & ACTIVE_STATES
        assert len(TERMINAL_STATES) == 8

    def test_is_terminal(self) -> None:
        assert CrystalState.TRANSMITTED.is_terminal
        assert CrystalState.SPLIT.is_terminal
        assert not CrystalState.FROZEN.is_terminal


class TestRole:
    def test_roles(self) -> None:
        assert {r.value for r in Role} == {"originator", "beneficiary", "supervisor", "anyone"}


class TestEventType:
    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.CRYSTAL_SPAWNED, str)

    def test_event_values_are_unique(self) -> None:
        values = [e.value for e in EventType]
        assert len(values) == len(set(values))


class TestOverlayChoices:
    def test_quantum_algorithms(self) -> None:
        assert len(QuantumAlgorithm) == 6
        assert QuantumAlgorithm("sphincs-sha2-128f") is QuantumAlgorithm.SPHINCS_SHA2_128F

    def test_proof_systems(self) -> None:
        assert {p.value for p in ProofSystem} == {"groth16", "plonk", "stark"}

    def test_ciphers(self) -> None:
        assert {c.value for c in Cipher} == {"aes-256-gcm", "chacha20-poly1305"}
