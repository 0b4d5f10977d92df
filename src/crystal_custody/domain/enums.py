"""Domain enumerations for the Crystal Custody engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class CrystalState(enum.StrEnum):
    """Lifecycle states of a custody record.

    Transitions are enforced by CrystalStateMachine.
    See domain/state_machine.py for the transition table.
    """

    STABILIZING = "stabilizing"
    ACKNOWLEDGED = "acknowledged"
    ANOMALOUS = "anomalous"
    ISOLATED = "isolated"
    TIMELOCKED = "timelocked"
    ENCRYPTED = "encrypted"
    FROZEN = "frozen"
    EXTRACTION_PENDING = "extraction_pending"
    RECOVERING = "recovering"

    # Terminal tombstones, kept for audit
    TRANSMITTED = "transmitted"
    REVERTED = "reverted"
    DISSOLVED = "dissolved"
    DECAYED = "decayed"
    EXTRACTED = "extracted"
    SPLIT = "split"
    BALANCED = "balanced"
    RECOVERED = "recovered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        CrystalState.TRANSMITTED,
        CrystalState.REVERTED,
        CrystalState.DISSOLVED,
        CrystalState.DECAYED,
        CrystalState.EXTRACTED,
        CrystalState.SPLIT,
        CrystalState.BALANCED,
        CrystalState.RECOVERED,
    }
)

ACTIVE_STATES = frozenset({CrystalState.STABILIZING, CrystalState.ACKNOWLEDGED})


class Role(enum.StrEnum):
    """Roles a caller can hold relative to one custody record."""

    ORIGINATOR = "originator"
    BENEFICIARY = "beneficiary"
    SUPERVISOR = "supervisor"
    ANYONE = "anyone"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the custody_events table.

    Every successful operation MUST produce exactly one event.
    Failed operations produce none.
    """

    # Creation
    CRYSTAL_SPAWNED = "CRYSTAL_SPAWNED"
    CRYSTAL_PHASED_CREATED = "CRYSTAL_PHASED_CREATED"
    FRAGMENT_MATERIALIZED = "FRAGMENT_MATERIALIZED"

    # Release paths
    ENERGY_TRANSMITTED = "ENERGY_TRANSMITTED"
    ENERGY_REVERTED = "ENERGY_REVERTED"
    CRYSTAL_DISSOLVED = "CRYSTAL_DISSOLVED"
    DECAYED_RECLAIMED = "DECAYED_RECLAIMED"
    PARTIAL_EXTRACTION = "PARTIAL_EXTRACTION"
    CRYSTAL_SPLIT = "CRYSTAL_SPLIT"
    CHRONO_EXTRACTION_INITIATED = "CHRONO_EXTRACTION_INITIATED"
    CHRONO_EXTRACTED = "CHRONO_EXTRACTED"

    # Lifecycle without funds movement
    RECEIPT_ACKNOWLEDGED = "RECEIPT_ACKNOWLEDGED"
    STABILITY_EXTENDED = "STABILITY_EXTENDED"
    STEWARDSHIP_TRANSFERRED = "STEWARDSHIP_TRANSFERRED"

    # Disputes and recovery
    ANOMALY_REPORTED = "ANOMALY_REPORTED"
    ANOMALY_BALANCED = "ANOMALY_BALANCED"
    CRYSTAL_ISOLATED = "CRYSTAL_ISOLATED"
    CRYSTAL_FROZEN = "CRYSTAL_FROZEN"
    RECOVERY_INITIATED = "RECOVERY_INITIATED"
    EMERGENCY_RECOVERED = "EMERGENCY_RECOVERED"

    # Overlays
    QUANTUM_SIGNATURE_REGISTERED = "QUANTUM_SIGNATURE_REGISTERED"
    METADATA_EMBEDDED = "METADATA_EMBEDDED"
    ZK_VERIFICATION_REGISTERED = "ZK_VERIFICATION_REGISTERED"
    ENCRYPTION_APPLIED = "ENCRYPTION_APPLIED"
    MULTISIG_SCHEME_REGISTERED = "MULTISIG_SCHEME_REGISTERED"
    TIMELOCK_APPLIED = "TIMELOCK_APPLIED"
    RATE_LIMITING_CONFIGURED = "RATE_LIMITING_CONFIGURED"
    TAMPER_MONITORING_REGISTERED = "TAMPER_MONITORING_REGISTERED"


class QuantumAlgorithm(enum.StrEnum):
    """Post-quantum signature schemes accepted for registration."""

    DILITHIUM2 = "dilithium2"
    DILITHIUM3 = "dilithium3"
    DILITHIUM5 = "dilithium5"
    FALCON512 = "falcon512"
    FALCON1024 = "falcon1024"
    SPHINCS_SHA2_128F = "sphincs-sha2-128f"


class ProofSystem(enum.StrEnum):
    GROTH16 = "groth16"
    PLONK = "plonk"
    STARK = "stark"


class Cipher(enum.StrEnum):
    AES_256_GCM = "aes-256-gcm"
    CHACHA20_POLY1305 = "chacha20-poly1305"
