"""Application services — use case orchestration."""

from crystal_custody.services.custody_service import CustodyService
from crystal_custody.services.transfer_service import LedgerTransferService

__all__ = ["CustodyService", "LedgerTransferService"]
