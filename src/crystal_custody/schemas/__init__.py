"""Pydantic API schemas."""

from crystal_custody.schemas.custody import (
    BalanceAnomalyRequest,
    BalanceResponse,
    CreditRequest,
    CrystalEventResponse,
    CrystalResponse,
    CrystalStatusResponse,
    EmergencyRecoveryRequest,
    ExtendStabilityRequest,
    HealthResponse,
    OverlayRequest,
    PartialExtractionRequest,
    ReportAnomalyRequest,
    SignedFinalizeRequest,
    SpawnCrystalRequest,
    SplitRequest,
    StabilityResponse,
    StatisticsResponse,
    TransferStewardshipRequest,
)

__all__ = [
    "BalanceAnomalyRequest",
    "BalanceResponse",
    "CreditRequest",
    "CrystalEventResponse",
    "CrystalResponse",
    "CrystalStatusResponse",
    "EmergencyRecoveryRequest",
    "ExtendStabilityRequest",
    "HealthResponse",
    "OverlayRequest",
    "PartialExtractionRequest",
    "ReportAnomalyRequest",
    "SignedFinalizeRequest",
    "SpawnCrystalRequest",
    "SplitRequest",
    "StabilityResponse",
    "StatisticsResponse",
    "TransferStewardshipRequest",
]
