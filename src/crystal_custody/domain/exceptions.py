"""Domain exceptions for the Crystal Custody engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Every precondition failure raises one of these BEFORE any mutation, so a
failed operation always leaves the record untouched.
"""


class CustodyError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "CUSTODY_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class CrystalNotFoundError(CustodyError):
    """Raised when a crystal id does not exist."""

    def __init__(self, crystal_id: int) -> None:
        super().__init__(
            message=f"Crystal not found: {crystal_id}",
            code="NOT_FOUND",
        )
        self.crystal_id = crystal_id


class InvalidIdentifierError(CustodyError):
    """Raised when an id was never issued (below 1 or above the latest id)."""

    def __init__(self, crystal_id: int, latest_id: int) -> None:
        super().__init__(
            message=f"Invalid crystal id {crystal_id}: latest issued id is {latest_id}",
            code="INVALID_IDENTIFIER",
        )
        self.crystal_id = crystal_id
        self.latest_id = latest_id


# --- Permission Errors ---


class PermissionDeniedError(CustodyError):
    """Raised when the caller holds none of the roles an operation allows."""

    def __init__(self, caller: str, operation: str, crystal_id: int | None = None) -> None:
        target = f" on crystal {crystal_id}" if crystal_id is not None else ""
        super().__init__(
            message=f"Caller {caller} may not {operation}{target}",
            code="PERMISSION_DENIED",
        )
        self.caller = caller
        self.operation = operation


# --- State Machine Errors ---


class AlreadyProcessedError(CustodyError):
    """Raised when the record's state does not permit the operation.

    Example: finalize_transmission on a record that is already reverted.
    """

    def __init__(self, crystal_id: int, current_state: str, operation: str) -> None:
        super().__init__(
            message=(
                f"Crystal {crystal_id} in state '{current_state}' "
                f"does not permit {operation}"
            ),
            code="ALREADY_PROCESSED",
        )
        self.crystal_id = crystal_id
        self.current_state = current_state
        self.operation = operation


class ConcurrentModificationError(CustodyError):
    """Raised when another transaction committed a change to the same record first."""

    def __init__(self, crystal_id: int | None = None) -> None:
        super().__init__(
            message=f"Crystal {crystal_id} was modified concurrently",
            code="CONCURRENT_MODIFICATION",
        )
        self.crystal_id = crystal_id


# --- Timing Errors ---


class ExpiredError(CustodyError):
    """Raised when the decay deadline has passed but freshness is required."""

    def __init__(self, crystal_id: int, deadline: int, now: int) -> None:
        super().__init__(
            message=f"Crystal {crystal_id} expired at height {deadline} (now {now})",
            code="EXPIRED",
        )
        self.deadline = deadline
        self.now = now


class NotYetExpiredError(CustodyError):
    """Raised when an operation requires a deadline that has not been reached."""

    def __init__(self, crystal_id: int, available_at: int, now: int) -> None:
        super().__init__(
            message=f"Crystal {crystal_id} not available until height {available_at} (now {now})",
            code="NOT_YET_EXPIRED",
        )
        self.available_at = available_at
        self.now = now


# --- Input Errors ---


class InvalidQuantityError(CustodyError):
    """Raised when an amount, ratio, or count is outside its permitted range."""

    def __init__(self, name: str, value: int, low: int, high: int) -> None:
        super().__init__(
            message=f"{name}={value} outside permitted range [{low}, {high}]",
            code="INVALID_QUANTITY",
        )
        self.name = name
        self.value = value


class InvalidAmountError(CustodyError):
    """Raised when a custody amount is not positive or exceeds the 64-bit limit."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            message=f"Amount must be between 1 and 2**63 - 1, got {amount}",
            code="INVALID_AMOUNT",
        )


class InvalidTagError(CustodyError):
    def __init__(self, tag: int) -> None:
        super().__init__(
            message=f"Wavelength tag must be between 1 and 2**63 - 1, got {tag}",
            code="INVALID_TAG",
        )


class UnevenDivisionError(CustodyError):
    """Raised when an amount cannot be divided exactly into equal parts."""

    def __init__(self, amount: int, parts: int) -> None:
        super().__init__(
            message=f"Amount {amount} is not evenly divisible into {parts} parts",
            code="UNEVEN_DIVISION",
        )
        self.amount = amount
        self.parts = parts


class InvalidOriginatorError(CustodyError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_ORIGINATOR")


class InvalidBeneficiaryError(CustodyError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_BENEFICIARY")


class InvalidParameterError(CustodyError):
    """Raised when an enumerated or formatted overlay parameter is malformed."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid {name}: {reason}",
            code="INVALID_PARAMETER",
        )
        self.name = name


# --- Signature Errors ---


class InvalidSignatureError(CustodyError):
    """Raised when no signer can be recovered from a signature."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Signature could not be verified: {reason}",
            code="INVALID_SIGNATURE",
        )


# --- Transfer Errors ---


class TransferError(CustodyError):
    """Raised by a value-transfer service when a move cannot be applied."""

    def __init__(self, message: str, code: str = "TRANSFER_ERROR") -> None:
        super().__init__(message=message, code=code)


class InsufficientFundsError(TransferError):
    """Raised when a principal's balance cannot cover a move."""

    def __init__(self, principal: str, required: int, available: int) -> None:
        super().__init__(
            message=(
                f"Insufficient funds: {principal} requires {required}, "
                f"has {available}"
            ),
            code="INSUFFICIENT_FUNDS",
        )
        self.principal = principal
        self.required = required
        self.available = available


class TransferFailedError(CustodyError):
    """Raised by the engine when the value-transfer service rejected a payout."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Transfer failed: {reason}",
            code="TRANSFER_FAILED",
        )
        self.reason = reason


# --- Idempotency Errors ---


class DuplicateOperationError(CustodyError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
