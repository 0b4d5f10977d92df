"""Domain layer — pure custody rules with zero framework dependencies."""

from crystal_custody.domain.context import CallContext, Clock
from crystal_custody.domain.enums import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    CrystalState,
    EventType,
    Role,
)
from crystal_custody.domain.exceptions import (
    AlreadyProcessedError,
    CrystalNotFoundError,
    CustodyError,
    PermissionDeniedError,
    TransferFailedError,
)
from crystal_custody.domain.state_machine import (
    CrystalStateMachine,
    allowed_operations,
    resolve_transition,
)
from crystal_custody.domain.transfer_protocol import Move, ValueTransferService
from crystal_custody.domain.verifier_protocol import (
    SignatureVerifier,
    same_identity,
    signed_release_message,
)

__all__ = [
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "CallContext",
    "Clock",
    "CrystalState",
    "EventType",
    "Role",
    "AlreadyProcessedError",
    "CrystalNotFoundError",
    "CustodyError",
    "PermissionDeniedError",
    "TransferFailedError",
    "CrystalStateMachine",
    "allowed_operations",
    "resolve_transition",
    "Move",
    "ValueTransferService",
    "SignatureVerifier",
    "same_identity",
    "signed_release_message",
]
